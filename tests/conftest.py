import time

import pytest

import amqprpc
from amqprpc.transport.memory import MemoryBroker, MemoryTransport


class RecordingTransport(MemoryTransport):
    """ A MemoryTransport that remembers everything it publishes, as
        (queue, body, correlation_id, reply_to) tuples.
    """

    def __init__(self, broker):
        MemoryTransport.__init__(self, broker)
        self.published = list()

    def publish(self, queue, body, correlation_id=None, reply_to=None):
        self.published.append((queue, body, correlation_id, reply_to))
        MemoryTransport.publish(self, queue, body, correlation_id, reply_to)


@pytest.fixture
def memory_broker():
    return MemoryBroker()


@pytest.fixture
def server(memory_broker):

    broker = amqprpc.Broker(transport=RecordingTransport(memory_broker))
    broker.initialize()

    yield broker

    broker.close()


@pytest.fixture
def client(memory_broker):

    broker = amqprpc.Broker(transport=RecordingTransport(memory_broker))
    broker.initialize()

    yield broker

    broker.close()


@pytest.fixture
def wait_for():
    """ Poll a predicate until it is true; fail the test after *timeout*
        seconds.
    """

    def waiter(predicate, timeout=2):
        expiration = time.monotonic() + timeout
        while time.monotonic() < expiration:
            if predicate():
                return
            time.sleep(0.005)
        raise AssertionError('condition not met within %s seconds' % (timeout))

    return waiter

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
