"""Transport-agnostic request/reply session layer.

The client side issues calls against a shared reply queue and routes each
reply back to its caller by correlation id; the server side consumes a work
queue and turns every request into exactly one reply.
"""

from __future__ import annotations

import concurrent.futures
import threading
import uuid
from typing import Any, Dict, Mapping, Optional, Union

import structlog

from . import registry
from .config import Settings
from .errors import CallTimeout, ConfigurationError, ProtocolError, RemoteError
from .protocol.envelope import (
    Envelope,
    decode_reply,
    decode_request,
    encode_error,
    encode_reply,
    encode_request,
)
from .protocol.fields import MALFORMED_REQUEST, NOT_REGISTERED, UNKNOWN_ERROR
from .transport.base import Delivery, Transport, TransportError


logger = structlog.get_logger()


class PendingCall:
    """Client-side handle for one outstanding call.

    The caller holds :attr:`future`; the reply router completes it exactly
    once, with the reply value or with a :class:`RemoteError`.
    """

    def __init__(self, token: str):
        self.token = token
        self.future: concurrent.futures.Future = concurrent.futures.Future()

    def __repr__(self) -> str:
        return f"PendingCall({self.token!r}, done={self.future.done()})"

    def _complete(self, value: Any) -> None:
        try:
            self.future.set_result(value)
        except concurrent.futures.InvalidStateError:
            # The caller gave up on this call already.
            pass

    def _fail(self, error: BaseException) -> None:
        try:
            self.future.set_exception(error)
        except concurrent.futures.InvalidStateError:
            pass


class CallTracker:
    """Thread-safe map of correlation token to :class:`PendingCall`."""

    def __init__(self):
        self._pending: Dict[str, PendingCall] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, token: str) -> bool:
        with self._lock:
            return token in self._pending

    def register(self, token: Optional[str] = None) -> PendingCall:
        """Track a new call. A fresh uuid4 token is generated unless one is
        supplied. Cancelling the call's future forgets it."""

        if token is None:
            token = str(uuid.uuid4())

        pending = PendingCall(token)
        with self._lock:
            if token in self._pending:
                raise ValueError(f"correlation id already outstanding: {token}")
            self._pending[token] = pending

        pending.future.add_done_callback(lambda _future: self.discard(token))
        return pending

    def pop(self, token: str) -> Optional[PendingCall]:
        with self._lock:
            return self._pending.pop(token, None)

    def discard(self, token: str) -> None:
        with self._lock:
            self._pending.pop(token, None)

    def fail_all(self, error: BaseException) -> int:
        """Fail every outstanding call with *error*; return how many."""

        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()

        for call in pending:
            call._fail(error)

        return len(pending)


class RequestClient:
    """Client-side request/reply logic.

    All calls made through one client share a single reply queue, declared
    the first time a call is made and consumed without acknowledgment.
    """

    def __init__(self, transport: Transport, settings: Optional[Settings] = None):
        self.transport = transport
        self.settings = settings or Settings()
        self.tracker = CallTracker()
        self.reply_queue: Optional[str] = None
        self._reply_lock = threading.Lock()

    # --- public API ---

    def call(
        self, queue: str, payload: Union[Envelope, Mapping[str, Any]]
    ) -> concurrent.futures.Future:
        """Send *payload* to *queue*; return a future for the reply.

        The future resolves to the reply value, or raises
        :class:`RemoteError` if the server answered with an error.
        Cancelling the future abandons the call.
        """

        if self.transport is None or not self.transport.is_open:
            raise ConfigurationError("AMQP channel not initialized")

        body = encode_request(payload)
        reply_queue = self._reply_queue()

        pending = self.tracker.register()
        try:
            self.transport.publish(
                queue, body, correlation_id=pending.token, reply_to=reply_queue
            )
        except TransportError:
            self.tracker.discard(pending.token)
            raise

        return pending.future

    def request(
        self, queue: str, type: str, data: Any = None, timeout: Optional[float] = None
    ) -> Any:
        """Blocking call: return the reply value for ``{type, data}``.

        With a *timeout* (seconds) the call is abandoned, and
        :class:`CallTimeout` raised, if no reply arrives in time.
        """

        future = self.call(queue, Envelope(type, data))

        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            if not future.cancel():
                # The reply raced the timeout and won.
                return future.result()
            raise CallTimeout(f"{type} @ {queue}: no reply in {timeout:.2f} sec")

    # --- internal ---

    def _reply_queue(self) -> str:
        if self.reply_queue is not None:
            return self.reply_queue

        with self._reply_lock:
            if self.reply_queue is None:
                name = self.settings.reply_prefix + str(uuid.uuid4())
                name = self.transport.declare_queue(
                    name,
                    durable=False,
                    auto_delete=True,
                    message_ttl=self.settings.reply_ttl,
                )
                self.transport.consume(name, self._on_reply, auto_ack=True)
                self.reply_queue = name

        return self.reply_queue

    def _on_reply(self, delivery: Delivery) -> None:
        """Route one reply to the call waiting on its correlation id."""

        token = delivery.correlation_id
        if not token:
            return

        pending = self.tracker.pop(token)
        if pending is None:
            logger.debug("rpc_reply_dropped", correlation_id=token)
            return

        try:
            reply = decode_reply(delivery.body)
        except ProtocolError as e:
            logger.warning("rpc_reply_malformed", correlation_id=token, error=str(e))
            pending._fail(e)
            return

        if reply.ok:
            pending._complete(reply.value)
        else:
            pending._fail(RemoteError(reply.error))


class RequestServer:
    """Server-side request dispatcher for one work queue.

    Requests are handed to a pool of worker threads as large as the
    prefetch limit, so at most that many handlers run at once. Every
    request is answered and then acknowledged, whatever happens to it.
    """

    def __init__(
        self,
        transport: Transport,
        queue: str,
        handlers: Union[registry.Handlers, Mapping[str, Any]],
        prefetch: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        self.transport = transport
        self.queue = queue
        self.handlers = registry.handlers(handlers)
        self.settings = settings or Settings()
        self.prefetch = self.settings.prefetch if prefetch is None else int(prefetch)

        if self.prefetch < 1:
            raise ValueError(f"prefetch must be at least 1, not {self.prefetch}")

        self.consumer_tag: Optional[str] = None
        self.workers = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.prefetch, thread_name_prefix="amqprpc-worker"
        )

    def start(self) -> None:
        if self.transport is None or not self.transport.is_open:
            raise ConfigurationError("AMQP channel not initialized")

        self.handlers.freeze()
        self.transport.declare_queue(self.queue, durable=True)
        self.transport.set_prefetch(self.prefetch)
        self.consumer_tag = self.transport.consume(self.queue, self._on_request)

    def stop(self, wait: bool = True) -> None:
        self.workers.shutdown(wait=wait)

    # --- request handling ---

    def _on_request(self, delivery: Delivery) -> None:
        self.workers.submit(self._req_incoming, delivery)

    def _req_incoming(self, delivery: Delivery) -> None:
        """Dispatch to the registered handler and send the reply."""

        try:
            envelope = decode_request(delivery.body)
        except ProtocolError as e:
            logger.warning("rpc_request_malformed", queue=self.queue, error=str(e))
            self._respond(delivery, encode_error(MALFORMED_REQUEST))
            return

        handler = self.handlers.lookup(envelope.type)
        if handler is None:
            logger.error("rpc_call_not_registered", queue=self.queue, type=envelope.type)
            self._respond(delivery, encode_error(NOT_REGISTERED))
            return

        try:
            body = encode_reply(handler(envelope.data))
        except Exception as e:
            logger.warning(
                "rpc_handler_failed", queue=self.queue, type=envelope.type, exc_info=True
            )
            body = encode_error(str(e) or UNKNOWN_ERROR)

        self._respond(delivery, body)

    def _respond(self, delivery: Delivery, body: bytes) -> None:
        """Publish the reply, then acknowledge the request."""

        try:
            if delivery.reply_to:
                self.transport.publish(
                    delivery.reply_to, body, correlation_id=delivery.correlation_id
                )
            else:
                logger.warning(
                    "rpc_reply_unaddressed",
                    queue=self.queue,
                    correlation_id=delivery.correlation_id,
                )

            self.transport.ack(delivery.delivery_tag)
        except TransportError as e:
            logger.error(
                "rpc_reply_failed",
                queue=self.queue,
                correlation_id=delivery.correlation_id,
                error=str(e),
            )
