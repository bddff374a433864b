"""Transport interface.

This is the (small) contract that transport implementations should follow.
It lives outside :mod:`amqprpc.session` so the request/reply logic remains
broker-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional


# Transport agnostic exceptions

class TransportError(Exception):
    """Base class for all transport-layer errors."""


class TransportConnectionError(TransportError):
    """The transport could not establish or maintain a connection."""


class Delivery:
    """One inbound message as handed to a consumer callback."""

    __slots__ = ("body", "correlation_id", "reply_to", "delivery_tag")

    def __init__(
        self,
        body: bytes,
        correlation_id: Optional[str] = None,
        reply_to: Optional[str] = None,
        delivery_tag: Optional[int] = None,
    ):
        self.body = body
        self.correlation_id = correlation_id
        self.reply_to = reply_to
        self.delivery_tag = delivery_tag

    def __repr__(self) -> str:
        return (
            f"Delivery(tag={self.delivery_tag!r}, "
            f"correlation_id={self.correlation_id!r}, "
            f"reply_to={self.reply_to!r}, body={self.body!r})"
        )


Callback = Callable[[Delivery], None]


class Transport(ABC):
    """Minimal contract for a broker connection with a single channel.

    Consumer callbacks are invoked on the transport's own I/O thread, one
    at a time; they must not block. Every other method may be called from
    any thread.
    """

    #: Called with the exception when the connection fails.
    on_error: Optional[Callable[[BaseException], None]] = None

    #: Called once when the connection is gone, for whatever reason.
    on_close: Optional[Callable[[], None]] = None

    @abstractmethod
    def open(self) -> None:
        """Establish the underlying connection and channel."""

    @abstractmethod
    def close(self) -> None:
        """Tear down the underlying connection."""

    @abstractmethod
    def declare_queue(
        self,
        name: str,
        durable: bool = False,
        auto_delete: bool = False,
        message_ttl: Optional[int] = None,
    ) -> str:
        """Declare a queue and return its name. *message_ttl* is in ms."""

    @abstractmethod
    def set_prefetch(self, count: int) -> None:
        """Bound the unacknowledged deliveries for consumers started later."""

    @abstractmethod
    def publish(
        self,
        queue: str,
        body: bytes,
        correlation_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        """Send *body* to *queue* on the default exchange. Fire and forget."""

    @abstractmethod
    def consume(self, queue: str, callback: Callback, auto_ack: bool = False) -> str:
        """Subscribe *callback* to *queue*; return the consumer tag."""

    @abstractmethod
    def ack(self, delivery_tag: int) -> None:
        """Acknowledge a delivery received with ``auto_ack=False``."""

    @property
    def is_open(self) -> bool:
        """Whether the transport is currently connected."""
        return False

    def _notify_error(self, error: BaseException) -> None:
        if self.on_error is not None:
            self.on_error(error)

    def _notify_close(self) -> None:
        if self.on_close is not None:
            self.on_close()
