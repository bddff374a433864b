"""Request and reply envelopes, and their JSON wire encoding.

A request travels as ``{"type": str, "data": any}``. A reply is either the
bare success value or ``{"error": str}``. The correlation token and reply
address never appear in the body; they ride in the message properties.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Union

from .. import json
from ..errors import ProtocolError
from .fields import DATA, ERROR, TYPE


class Envelope:
    """A typed request: the handler *type* tag and its opaque *data*."""

    __slots__ = ("type", "data")

    def __init__(self, type: str, data: Any = None):
        self.type = type
        self.data = data

    def __repr__(self) -> str:
        return f"Envelope(type={self.type!r}, data={self.data!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Envelope):
            return NotImplemented
        return self.type == other.type and self.data == other.data

    def to_dict(self) -> dict:
        return {TYPE: self.type, DATA: self.data}

    @classmethod
    def from_dict(cls, d: Any) -> "Envelope":
        if not isinstance(d, dict):
            raise ProtocolError(f"request body is not an object: {d!r}")

        type = d.get(TYPE)
        if not isinstance(type, str):
            raise ProtocolError(f"request body has no usable {TYPE!r} field")

        return cls(type, d.get(DATA))


class Reply:
    """The outcome of one request: a success *value* or an *error* string."""

    __slots__ = ("value", "error")

    def __init__(self, value: Any = None, error: Optional[str] = None):
        self.value = value
        self.error = error

    def __repr__(self) -> str:
        if self.error is not None:
            return f"Reply(error={self.error!r})"
        return f"Reply(value={self.value!r})"

    @property
    def ok(self) -> bool:
        return self.error is None


def encode_request(payload: Union[Envelope, Mapping[str, Any]]) -> bytes:
    """Serialize an :class:`Envelope`, or an equivalent mapping, to bytes."""

    if not isinstance(payload, Envelope):
        payload = Envelope.from_dict(dict(payload))

    return json.dumps(payload.to_dict())


def decode_request(body: bytes) -> Envelope:
    """Parse a request body; raise :class:`ProtocolError` if it is unusable."""

    try:
        d = json.loads(body)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"request body is not valid JSON: {e}") from e

    return Envelope.from_dict(d)


def encode_reply(value: Any) -> bytes:
    return json.dumps(value)


def encode_error(message: str) -> bytes:
    return json.dumps({ERROR: message})


def decode_reply(body: bytes) -> Reply:
    """Parse a reply body.

    Any object carrying a truthy ``error`` field is treated as an error
    reply; everything else is a success value.
    """

    try:
        d = json.loads(body)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"reply body is not valid JSON: {e}") from e

    if isinstance(d, dict) and d.get(ERROR):
        error = d[ERROR]
        if not isinstance(error, str):
            error = str(error)
        return Reply(error=error)

    return Reply(value=d)
