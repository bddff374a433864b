""" The :class:`Broker` ties the pieces together: one connection per
    process, any number of served work queues, and a single client for
    outbound calls.
"""

import structlog

from . import session
from . import transport as transportmodule
from .config import Settings
from .errors import ConfigurationError
from .transport import TransportConnectionError


logger = structlog.get_logger()


class Broker:
    """ A request/reply endpoint on top of an AMQP broker. The typical
        server looks like::

            broker = amqprpc.Broker()
            broker.initialize()
            broker.serve('math', {'add': lambda data: data[0] + data[1]})

        and the typical client::

            broker = amqprpc.Broker()
            broker.initialize()
            five = broker.request('math', 'add', (2, 3))

        *url* is the AMQP connection string; if it is not specified it is
        resolved from the environment when :func:`initialize` is called, see
        :func:`amqprpc.config.connection_string`. *backend* selects the
        transport, 'rabbitmq' or 'memory'. A ready-made, unopened *transport*
        can be supplied instead, in which case *url* and *backend* are
        ignored.
    """

    def __init__(self, url=None, settings=None, transport=None, backend=None):

        self.url = url
        self.backend = backend
        self.settings = settings or Settings()
        self.transport = transport
        self.client = None
        self.servers = list()


    def __enter__(self):
        if self.client is None:
            self.initialize()
        return self


    def __exit__(self, *exc_info):
        self.close()


    def initialize(self):
        """ Open the connection and channel. It is an error to initialize
            a :class:`Broker` more than once.
        """

        if self.client is not None:
            raise ConfigurationError('AMQP connection already initialized')

        if self.transport is None:
            self.transport = transportmodule.create(self.url, self.settings, self.backend)

        self.transport.on_error = self._handle_connection_error
        self.transport.on_close = self._handle_connection_close
        self.transport.open()

        self.client = session.RequestClient(self.transport, self.settings)


    def close(self):
        """ Close the connection, then wait for any in-flight handlers to
            finish; their replies can no longer be delivered, and the
            broker will redeliver the unacknowledged requests elsewhere.
        """

        if self.transport is not None:
            self.transport.close()

        self._fail_outstanding("connection closed")

        for server in self.servers:
            server.stop()

        self.servers = list()


    def serve(self, queue, handlers, prefetch=None):
        """ Consume requests from the durable work queue named *queue*,
            dispatching each one to *handlers* according to its type tag.
            *handlers* is a mapping, or an :class:`amqprpc.Handlers`
            instance; it is frozen once serving begins. At most *prefetch*
            requests are handled concurrently, the default is 5.

            Returns the :class:`amqprpc.session.RequestServer` doing the work.
        """

        self._require_channel()

        server = session.RequestServer(self.transport, queue, handlers, prefetch, self.settings)
        server.start()
        self.servers.append(server)
        return server


    def call(self, queue, payload):
        """ Send *payload*, an :class:`amqprpc.Envelope` or a dictionary with
            'type' and 'data' keys, to *queue*. Returns a
            :class:`concurrent.futures.Future` that resolves to the reply.
        """

        self._require_channel()
        return self.client.call(queue, payload)


    def request(self, queue, type, data=None, timeout=None):
        """ Blocking equivalent of :func:`call`: return the reply value, or
            raise :class:`amqprpc.RemoteError` for an error reply.
        """

        self._require_channel()
        return self.client.request(queue, type, data, timeout)


    def _require_channel(self):
        if self.client is None:
            raise ConfigurationError('AMQP channel not initialized')


    def _handle_connection_error(self, error):
        # No reconnection is attempted.
        logger.error('amqp_connection_error', error=str(error))
        self._fail_outstanding("connection error: " + str(error))


    def _handle_connection_close(self):
        logger.error('amqp_connection_closed')
        self._fail_outstanding("connection closed")


    def _fail_outstanding(self, reason):
        """ Replies can no longer arrive; fail every call still waiting
            for one.
        """

        if self.client is None:
            return

        count = self.client.tracker.fail_all(TransportConnectionError(reason))
        if count:
            logger.warning("rpc_calls_abandoned", count=count, reason=reason)


# end of class Broker

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
