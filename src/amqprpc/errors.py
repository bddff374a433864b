""" Exceptions raised by the request/reply layer. Transport-level exceptions
    live in :mod:`amqprpc.transport.base`.
"""


class RPCError(Exception):
    """ Base class for all request/reply errors.
    """


class ConfigurationError(RPCError):
    """ Missing credentials, or an operation attempted before the
        channel was initialized.
    """


class RemoteError(RPCError):
    """ The remote handler answered with an error reply. The string form of
        the exception is the message sent by the server.
    """

    def __init__(self, message):
        RPCError.__init__(self, message)
        self.message = message


class ProtocolError(RPCError):
    """ A message body could not be interpreted.
    """


class CallTimeout(RPCError):
    """ A blocking request did not receive a reply in time.
    """


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
