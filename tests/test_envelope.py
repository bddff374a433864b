""" Encoding and decoding of request and reply bodies.
"""

import pytest

from amqprpc import json
from amqprpc.errors import ProtocolError
from amqprpc.protocol import (
    Envelope,
    decode_reply,
    decode_request,
    encode_error,
    encode_reply,
    encode_request,
)


def test_request_encoding():

    body = encode_request(Envelope('add', [1, 2]))
    assert isinstance(body, bytes)
    assert json.loads(body) == {'type': 'add', 'data': [1, 2]}

    assert decode_request(body) == Envelope('add', [1, 2])


def test_request_from_mapping():

    body = encode_request({'type': 'ping'})
    assert decode_request(body) == Envelope('ping', None)

    with pytest.raises(ProtocolError):
        encode_request({'data': 1})


@pytest.mark.parametrize('body', [
    b'',
    b'not json',
    b'[1, 2, 3]',
    b'"add"',
    b'{"data": 1}',
    b'{"type": null, "data": 1}',
    b'{"type": ["add"], "data": 1}',
])
def test_malformed_request(body):

    with pytest.raises(ProtocolError):
        decode_request(body)


def test_success_reply():

    reply = decode_reply(encode_reply(5))
    assert reply.ok
    assert reply.value == 5
    assert reply.error is None

    reply = decode_reply(encode_reply(None))
    assert reply.ok
    assert reply.value is None


def test_error_reply():

    body = encode_error('boom')
    assert json.loads(body) == {'error': 'boom'}

    reply = decode_reply(body)
    assert not reply.ok
    assert reply.error == 'boom'


def test_falsy_error_is_a_value():

    reply = decode_reply(json.dumps({'error': '', 'value': 1}))
    assert reply.ok
    assert reply.value == {'error': '', 'value': 1}


def test_non_string_error():

    reply = decode_reply(json.dumps({'error': 42}))
    assert reply.error == '42'


def test_malformed_reply():

    with pytest.raises(ProtocolError):
        decode_reply(b'{broken')


def test_unserializable_reply():

    with pytest.raises(TypeError):
        encode_reply(object())


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
