"""In-process broker and transport.

A development and test backend with no network in the way. It keeps the
behaviour the request/reply layer relies on: named queues on a shared
:class:`MemoryBroker`, per-consumer prefetch limits, explicit or automatic
acknowledgment, auto-delete queues and per-queue message TTL. Consumer
callbacks run on a private thread per transport, one at a time, just as they
do on a pika I/O thread.
"""

from __future__ import annotations

import collections
import itertools
import queue as queuemodule
import threading
import time
import uuid
from typing import Deque, Dict, List, Optional, Tuple

import structlog

from .base import (
    Callback,
    Delivery,
    Transport,
    TransportConnectionError,
    TransportError,
)


logger = structlog.get_logger()


# (expires, body, correlation_id, reply_to); expires is None for no TTL.
_Message = Tuple[Optional[float], bytes, Optional[str], Optional[str]]


class _Queue:

    def __init__(self, name: str, durable: bool, auto_delete: bool, message_ttl: Optional[int]):
        self.name = name
        self.durable = durable
        self.auto_delete = auto_delete
        self.message_ttl = message_ttl
        self.messages: Deque[_Message] = collections.deque()
        self.consumers: List[_Consumer] = []
        self.next = 0


class _Consumer:

    def __init__(self, transport: "MemoryTransport", q: _Queue, callback: Callback, auto_ack: bool, prefetch: int):
        self.transport = transport
        self.queue = q
        self.callback = callback
        self.auto_ack = auto_ack
        self.prefetch = prefetch
        self.tag = f"ctag-{uuid.uuid4().hex}"
        self.unacked: Dict[int, _Message] = {}
        self.active = True

    @property
    def has_capacity(self) -> bool:
        if self.auto_ack or self.prefetch <= 0:
            return True
        return len(self.unacked) < self.prefetch


class MemoryBroker:
    """A set of named queues shared by every :class:`MemoryTransport`
    attached to it. All state is guarded by one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._queues: Dict[str, _Queue] = {}

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._queues

    def queue_names(self) -> List[str]:
        with self._lock:
            return sorted(self._queues)

    def message_count(self, name: str) -> int:
        """Ready (undelivered) messages sitting in queue *name*."""
        with self._lock:
            q = self._queues[name]
            self._expire(q)
            return len(q.messages)

    # --- called by MemoryTransport ---

    def _declare(self, name: str, durable: bool, auto_delete: bool, message_ttl: Optional[int]) -> str:
        if not name:
            name = f"amq.gen-{uuid.uuid4().hex}"

        with self._lock:
            if name not in self._queues:
                self._queues[name] = _Queue(name, durable, auto_delete, message_ttl)
        return name

    def _publish(self, name: str, body: bytes, correlation_id: Optional[str], reply_to: Optional[str]) -> None:
        with self._lock:
            q = self._queues.get(name)
            if q is None:
                # The default exchange drops messages for unknown queues.
                logger.debug("memory_publish_unroutable", queue=name)
                return

            expires = None
            if q.message_ttl is not None:
                expires = time.monotonic() + q.message_ttl / 1000.0

            q.messages.append((expires, body, correlation_id, reply_to))
            self._pump(q)

    def _consume(self, transport: "MemoryTransport", name: str, callback: Callback, auto_ack: bool, prefetch: int) -> _Consumer:
        with self._lock:
            q = self._queues.get(name)
            if q is None:
                raise TransportError(f"no queue {name!r}")

            consumer = _Consumer(transport, q, callback, auto_ack, prefetch)
            q.consumers.append(consumer)
            self._pump(q)
        return consumer

    def _ack(self, consumer: _Consumer, delivery_tag: int) -> None:
        with self._lock:
            consumer.unacked.pop(delivery_tag, None)
            if consumer.queue.name in self._queues:
                self._pump(consumer.queue)

    def _detach(self, consumers: List[_Consumer]) -> None:
        """Remove *consumers*; their unacknowledged messages go back to
        the head of the queue in delivery order."""

        with self._lock:
            touched = []
            for consumer in consumers:
                q = consumer.queue
                consumer.active = False
                if consumer in q.consumers:
                    q.consumers.remove(consumer)

                for tag in sorted(consumer.unacked, reverse=True):
                    q.messages.appendleft(consumer.unacked[tag])
                consumer.unacked.clear()

                if q not in touched:
                    touched.append(q)

            for q in touched:
                if q.auto_delete and not q.consumers:
                    self._queues.pop(q.name, None)
                else:
                    self._pump(q)

    # --- internal, lock held ---

    def _expire(self, q: _Queue) -> None:
        now = time.monotonic()
        while q.messages:
            expires = q.messages[0][0]
            if expires is None or expires > now:
                break
            q.messages.popleft()

    def _next_consumer(self, q: _Queue) -> Optional[_Consumer]:
        count = len(q.consumers)
        for offset in range(count):
            index = (q.next + offset) % count
            consumer = q.consumers[index]
            if consumer.has_capacity:
                q.next = (index + 1) % count
                return consumer
        return None

    def _pump(self, q: _Queue) -> None:
        while q.consumers:
            self._expire(q)
            if not q.messages:
                break

            consumer = self._next_consumer(q)
            if consumer is None:
                break

            message = q.messages.popleft()
            consumer.transport._deliver(consumer, message)


# end of class MemoryBroker


_default_broker: Optional[MemoryBroker] = None
_default_lock = threading.Lock()


def default_broker() -> MemoryBroker:
    """Return the process-wide :class:`MemoryBroker`."""

    global _default_broker
    with _default_lock:
        if _default_broker is None:
            _default_broker = MemoryBroker()
        return _default_broker


class MemoryTransport(Transport):
    """A :class:`Transport` attached to a :class:`MemoryBroker`."""

    def __init__(self, broker: Optional[MemoryBroker] = None):
        self.broker = broker or default_broker()

        self._inbox: queuemodule.Queue = queuemodule.Queue()
        self._thread: Optional[threading.Thread] = None
        self._open = False
        self._prefetch = 0
        self._tags = itertools.count(1)
        self._consumers: List[_Consumer] = []
        self._unacked: Dict[int, _Consumer] = {}

    # --- lifecycle ---

    def open(self) -> None:
        if self._thread is not None:
            raise TransportError("transport already opened")

        self._open = True
        self._thread = threading.Thread(target=self._run, name="amqprpc-memory", daemon=True)
        self._thread.start()

    def close(self) -> None:
        if not self._open:
            return

        self._open = False
        self.broker._detach(self._consumers)
        self._consumers = []
        self._unacked.clear()

        self._inbox.put(None)
        if threading.current_thread() is not self._thread:
            self._thread.join()

        self._notify_close()

    @property
    def is_open(self) -> bool:
        return self._open

    def _run(self) -> None:
        while True:
            work = self._inbox.get()
            if work is None:
                break

            consumer, delivery = work
            if not consumer.active:
                # Detached by close(); the message has been requeued.
                continue

            try:
                consumer.callback(delivery)
            except Exception:
                logger.exception("rpc_consume_failed", queue=consumer.queue.name)

    def _require_open(self) -> None:
        if not self._open:
            raise TransportConnectionError("memory transport is not open")

    def _deliver(self, consumer: _Consumer, message: _Message) -> None:
        """Called by the broker with its lock held."""

        _expires, body, correlation_id, reply_to = message
        tag = next(self._tags)

        if not consumer.auto_ack:
            consumer.unacked[tag] = message
            self._unacked[tag] = consumer

        delivery = Delivery(body, correlation_id=correlation_id, reply_to=reply_to, delivery_tag=tag)
        self._inbox.put((consumer, delivery))

    # --- Transport contract ---

    def declare_queue(
        self,
        name: str,
        durable: bool = False,
        auto_delete: bool = False,
        message_ttl: Optional[int] = None,
    ) -> str:
        self._require_open()
        return self.broker._declare(name, durable, auto_delete, message_ttl)

    def set_prefetch(self, count: int) -> None:
        self._require_open()
        self._prefetch = int(count)

    def publish(
        self,
        queue: str,
        body: bytes,
        correlation_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        self._require_open()
        self.broker._publish(queue, body, correlation_id, reply_to)

    def consume(self, queue: str, callback: Callback, auto_ack: bool = False) -> str:
        self._require_open()
        consumer = self.broker._consume(self, queue, callback, auto_ack, self._prefetch)
        self._consumers.append(consumer)
        return consumer.tag

    def ack(self, delivery_tag: int) -> None:
        self._require_open()

        consumer = self._unacked.pop(delivery_tag, None)
        if consumer is None:
            raise TransportError(f"unknown delivery tag {delivery_tag}")

        self.broker._ack(consumer, delivery_tag)
