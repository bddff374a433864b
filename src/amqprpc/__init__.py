""" Python implementation of request/reply calls over an AMQP broker. A
    server registers handlers for typed requests on a work queue; a client
    sends requests to that queue and receives exactly one reply for each,
    matched up by correlation id on a private reply queue.
"""

# Utility components.

from . import json
from . import errors
from .errors import (
    CallTimeout,
    ConfigurationError,
    ProtocolError,
    RemoteError,
    RPCError,
)

# Submodules used by multiple other components.

from . import config
from . import protocol
from . import transport
from .protocol import Envelope, Reply

# Primary public-facing interfaces.

from . import registry
from . import session
from .registry import Handlers
from .broker import Broker

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
