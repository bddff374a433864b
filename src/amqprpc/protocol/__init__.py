"""
amqprpc Protocol Layer
======================

The message vocabulary shared by both ends of a call. This package knows
nothing about brokers, queues or threads; it only maps requests and replies
to and from the bytes carried in a message body.

    Envelope  (envelope.py)   {type, data} request payload
    Reply     (envelope.py)   success value or error string
    fields    (fields.py)     canonical keys and fixed error messages
"""

from . import fields
from .envelope import (
    Envelope,
    Reply,
    decode_reply,
    decode_request,
    encode_error,
    encode_reply,
    encode_request,
)
