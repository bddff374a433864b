"""RabbitMQ transport built on a pika BlockingConnection.

pika connections are not thread safe. The connection and its one channel are
owned by a dedicated I/O thread; every other thread hands work over with
``add_callback_threadsafe``, the same arrangement used for the request
client and server in earlier versions of this code.
"""

from __future__ import annotations

import concurrent.futures
import threading
from typing import Optional

import pika
import pika.exceptions
import structlog

from ..config import Settings
from .base import (
    Callback,
    Delivery,
    Transport,
    TransportConnectionError,
    TransportError,
)


logger = structlog.get_logger()


class RabbitMQTransport(Transport):
    """One AMQP connection, one channel, one I/O thread."""

    open_timeout = 10
    poll_interval = 1

    def __init__(self, url: str, settings: Optional[Settings] = None):
        self.url = url
        self.settings = settings or Settings()

        self._connection = None
        self._channel = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._stopping = False
        self._open_error: Optional[BaseException] = None
        self._channel_error: Optional[BaseException] = None

    def _parameters(self) -> pika.URLParameters:
        params = pika.URLParameters(self.url)
        params.heartbeat = self.settings.heartbeat
        params.blocked_connection_timeout = self.settings.blocked_connection_timeout
        return params

    # --- lifecycle ---

    def open(self) -> None:
        if self._thread is not None:
            raise TransportError("transport already opened")

        self._thread = threading.Thread(
            target=self._run, name="amqprpc-io", daemon=True
        )
        self._thread.start()

        if not self._ready.wait(timeout=self.open_timeout):
            raise TransportConnectionError(
                f"no AMQP connection after {self.open_timeout} sec"
            )

        if self._open_error is not None:
            raise TransportConnectionError(
                f"cannot connect to AMQP broker: {self._open_error}"
            ) from self._open_error

    def close(self) -> None:
        if self._thread is None or self._connection is None:
            return

        self._stopping = True
        if threading.current_thread() is self._thread:
            return

        try:
            self._connection.add_callback_threadsafe(lambda: None)
        except pika.exceptions.AMQPError:
            # Already closed; the I/O loop is on its way out.
            pass

        self._thread.join()

    @property
    def is_open(self) -> bool:
        return (
            self._connection is not None
            and self._connection.is_open
            and self._channel is not None
            and self._channel.is_open
            and self._thread is not None
            and self._thread.is_alive()
        )

    def _run(self) -> None:
        try:
            self._connection = pika.BlockingConnection(self._parameters())
            self._channel = self._connection.channel()
            self._channel.add_on_close_callback(self._on_channel_closed)
        except pika.exceptions.AMQPError as e:
            self._open_error = e
            self._ready.set()
            return

        self._ready.set()

        try:
            while not self._stopping:
                self._connection.process_data_events(time_limit=self.poll_interval)
        except pika.exceptions.AMQPError as e:
            self._notify_error(e)
        finally:
            self._shutdown()

    def _shutdown(self) -> None:
        if self._connection.is_open:
            try:
                self._connection.close()
            except pika.exceptions.AMQPError as e:
                self._notify_error(e)

        self._notify_close()

    def _on_channel_closed(self, _channel, reason: BaseException) -> None:
        if not self._stopping:
            self._channel_failed(reason)

    def _channel_failed(self, error: BaseException) -> None:
        """Report a channel closed under us, once. The channel is not
        reopened, so the transport is unusable from here on."""

        if self._channel_error is not None:
            return

        self._channel_error = error
        self._notify_error(error)

    # --- cross-thread helpers ---

    def _require_open(self) -> None:
        if (
            self._channel is None
            or not self._connection.is_open
            or not self._channel.is_open
        ):
            raise TransportConnectionError("AMQP transport is not open")

    def _call(self, fn, *args, **kwargs):
        """Run *fn* here and now, translating pika errors."""

        try:
            return fn(*args, **kwargs)
        except pika.exceptions.ChannelClosed as e:
            self._channel_failed(e)
            raise TransportConnectionError(f"AMQP channel closed: {e}") from e
        except pika.exceptions.AMQPError as e:
            raise TransportError(f"{fn.__name__}: {e!r}") from e

    def _invoke(self, fn, *args, **kwargs):
        """Run *fn* on the I/O thread and return its result."""

        if threading.current_thread() is self._thread:
            return self._call(fn, *args, **kwargs)

        self._require_open()
        future: concurrent.futures.Future = concurrent.futures.Future()

        def run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self._call(fn, *args, **kwargs))
            except Exception as e:
                future.set_exception(e)

        try:
            self._connection.add_callback_threadsafe(run)
        except pika.exceptions.AMQPError as e:
            raise TransportConnectionError(str(e)) from e

        return future.result()

    def _submit(self, fn, *args, **kwargs) -> None:
        """Queue *fn* for the I/O thread without waiting for it."""

        def run():
            try:
                self._call(fn, *args, **kwargs)
            except TransportError as e:
                logger.error("amqp_operation_failed", operation=fn.__name__, error=str(e))

        if threading.current_thread() is self._thread:
            run()
            return

        self._require_open()
        try:
            self._connection.add_callback_threadsafe(run)
        except pika.exceptions.AMQPError as e:
            raise TransportConnectionError(str(e)) from e

    # --- Transport contract ---

    def declare_queue(
        self,
        name: str,
        durable: bool = False,
        auto_delete: bool = False,
        message_ttl: Optional[int] = None,
    ) -> str:
        arguments = None
        if message_ttl is not None:
            arguments = {"x-message-ttl": int(message_ttl)}

        def declare():
            result = self._channel.queue_declare(
                queue=name,
                durable=durable,
                auto_delete=auto_delete,
                arguments=arguments,
            )
            return result.method.queue

        return self._invoke(declare)

    def set_prefetch(self, count: int) -> None:
        def basic_qos():
            self._channel.basic_qos(prefetch_count=count)

        self._invoke(basic_qos)

    def publish(
        self,
        queue: str,
        body: bytes,
        correlation_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        properties = pika.BasicProperties(
            correlation_id=correlation_id,
            reply_to=reply_to,
        )

        def basic_publish():
            self._channel.basic_publish(
                exchange="",
                routing_key=queue,
                properties=properties,
                body=body,
            )

        self._submit(basic_publish)

    def consume(self, queue: str, callback: Callback, auto_ack: bool = False) -> str:
        def on_message(_ch, method, properties, body: bytes) -> None:
            delivery = Delivery(
                body,
                correlation_id=properties.correlation_id,
                reply_to=properties.reply_to,
                delivery_tag=method.delivery_tag,
            )
            try:
                callback(delivery)
            except Exception:
                logger.exception("rpc_consume_failed", queue=queue)

        def basic_consume():
            return self._channel.basic_consume(
                queue=queue,
                on_message_callback=on_message,
                auto_ack=auto_ack,
            )

        return self._invoke(basic_consume)

    def ack(self, delivery_tag: int) -> None:

        def basic_ack():
            self._channel.basic_ack(delivery_tag=delivery_tag)

        self._submit(basic_ack)
