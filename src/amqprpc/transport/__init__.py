"""Transport layer implementations."""

from .. import config
from ..errors import ConfigurationError
from .base import (
    Delivery,
    Transport,
    TransportError,
    TransportConnectionError,
)
from .memory import MemoryBroker, MemoryTransport


def create(url=None, settings=None, backend=None):
    """Return an unopened :class:`Transport` for the selected *backend*,
    'rabbitmq' or 'memory'; by default the ``AMQPRPC_TRANSPORT``
    environment variable decides. The rabbitmq backend needs a connection
    *url*, resolved from the environment when omitted."""

    if backend is None:
        backend = config.transport_backend()

    if backend == "memory":
        return MemoryTransport()

    if backend == "rabbitmq":
        from .rabbitmq import RabbitMQTransport

        if url is None:
            url = config.connection_string()
        return RabbitMQTransport(url, settings)

    raise ConfigurationError(f"unknown AMQPRPC_TRANSPORT backend: {backend!r}")
