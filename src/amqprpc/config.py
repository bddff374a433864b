""" Connection bootstrap and tunables. Credentials are resolved from the
    environment, or from a secret file mounted into the container; the
    tunables are collected in a :class:`Settings` instance so that they can
    be overridden per :class:`amqprpc.Broker`.
"""

import os

import structlog

from .errors import ConfigurationError


logger = structlog.get_logger()


class Settings:
    """ Tunable parameters for the request/reply machinery. Any keyword
        argument overrides the class default of the same name.

        :ivar prefetch: Maximum number of unacknowledged requests a server
            will hold at once.
        :ivar reply_ttl: Time-to-live, in milliseconds, for messages sitting
            in a client's reply queue.
        :ivar reply_prefix: Prefix for auto-generated reply queue names.
        :ivar heartbeat: AMQP heartbeat interval in seconds.
        :ivar blocked_connection_timeout: Seconds before a blocked
            connection is torn down by the broker.
    """

    prefetch = 5
    reply_ttl = 10000
    reply_prefix = 'rpc-reply-'
    heartbeat = 600
    blocked_connection_timeout = 300

    def __init__(self, **overrides):

        for key,value in overrides.items():
            if not hasattr(type(self), key):
                raise TypeError('unknown setting: ' + key)
            setattr(self, key, value)


    def __repr__(self):
        fields = ('prefetch', 'reply_ttl', 'reply_prefix', 'heartbeat', 'blocked_connection_timeout')
        pairs = ['%s=%r' % (field, getattr(self, field)) for field in fields]
        return 'Settings(' + ', '.join(pairs) + ')'


# end of class Settings



def connection_string(environ=None):
    """ Return the AMQP connection string. The sources are checked in order:
        an explicit ``AMQP_CONNECTION_STRING``; the contents of the file
        named by ``AMQP_SECRET_PATH``, with surrounding whitespace removed;
        and finally the four discrete ``AMQP_USERNAME``, ``AMQP_PASSWORD``,
        ``AMQP_HOST`` and ``AMQP_PORT`` fields. A :class:`ConfigurationError`
        is raised if none of them are available.

        *environ* defaults to :data:`os.environ`.
    """

    if environ is None:
        environ = os.environ

    explicit = environ.get('AMQP_CONNECTION_STRING')
    if explicit:
        return explicit

    secret_path = environ.get('AMQP_SECRET_PATH')
    if secret_path:
        try:
            with open(secret_path, 'r', encoding='utf-8') as secret_file:
                contents = secret_file.read()
        except OSError as e:
            logger.error('amqp_secret_unreadable', path=secret_path, error=str(e))
            raise

        return contents.strip()

    username = environ.get('AMQP_USERNAME')
    password = environ.get('AMQP_PASSWORD')
    host = environ.get('AMQP_HOST')
    port = environ.get('AMQP_PORT')

    if username and password and host and port:
        return 'amqp://%s:%s@%s:%s' % (username, password, host, port)

    raise ConfigurationError('Insufficient AMQP credentials provided. Please check the environment variables.')


def transport_backend(environ=None):
    """ Return the name of the transport backend selected by the
        ``AMQPRPC_TRANSPORT`` environment variable; 'rabbitmq' if unset.
    """

    if environ is None:
        environ = os.environ

    return environ.get('AMQPRPC_TRANSPORT', 'rabbitmq')


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
