"""Helpers for decoding inbound envelopes and building outbound control frames."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from gateway.errors import InvalidParamError, MalformedEnvelopeError
from gateway.protocol.opcodes import DEFAULT_INTENTS, Opcode
from gateway.protocol.scanner import DEFAULT_MAX_DEPTH, MAX_NESTING_DEPTH, BytesLike, Value, ValueKind, parse

DEFAULT_CLIENT_NAME = "gateway-client"

_FORBIDDEN_CHARS = frozenset('"\\')


class Envelope(BaseModel):
    """A decoded gateway envelope; ``payload`` keeps the raw bytes of ``d``.

    ``max_depth`` is the nesting limit the envelope was decoded with and also
    bounds the payload accessors.
    """

    model_config = ConfigDict(frozen=True)

    op: int
    payload: bytes = b"null"
    sequence: Optional[int] = None
    event: Optional[str] = None
    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, ge=1, le=MAX_NESTING_DEPTH, repr=False)

    def payload_value(self) -> Value:
        return parse(self.payload, max_depth=self.max_depth)

    def payload_member(self, key: str) -> Value:
        value = self.payload_value()
        if value.kind is not ValueKind.OBJECT:
            raise MalformedEnvelopeError(f"op {self.op} payload is {value.kind.value}, expected object")
        member = value.get(key)
        if member is None:
            raise MalformedEnvelopeError(f"op {self.op} payload is missing {key!r}")
        return member

    def payload_int(self, key: str) -> int:
        return self.payload_member(key).as_int()

    def payload_str(self, key: str) -> str:
        return self.payload_member(key).as_str()

    def payload_bool(self) -> bool:
        return self.payload_value().as_bool()


def decode(message: BytesLike, *, max_depth: int = DEFAULT_MAX_DEPTH) -> Envelope:
    """Decode one logical message into an ``Envelope``."""

    document = parse(message, max_depth=max_depth)
    if document.kind is not ValueKind.OBJECT:
        raise MalformedEnvelopeError(f"envelope must be an object, found {document.kind.value}")
    members = document.members()

    op_value = members.get("op")
    if op_value is None:
        raise MalformedEnvelopeError("envelope is missing 'op'")
    op = op_value.as_int()

    sequence: Optional[int] = None
    seq_value = members.get("s")
    if seq_value is not None and not seq_value.is_null:
        sequence = seq_value.as_int()

    event: Optional[str] = None
    event_value = members.get("t")
    if event_value is not None and not event_value.is_null:
        event = event_value.as_str()

    payload_value = members.get("d")
    payload = payload_value.raw if payload_value is not None else b"null"
    return Envelope(op=op, payload=payload, sequence=sequence, event=event, max_depth=max_depth)


def _require_plain_string(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidParamError(f"{name} must be a non-empty string")
    for char in value:
        if char in _FORBIDDEN_CHARS or ord(char) < 0x20:
            raise InvalidParamError(f"{name} contains a character that would need escaping")
    return value


def _require_non_negative_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidParamError(f"{name} must be a non-negative integer")
    return value


def _encode(op: Opcode, payload: Any) -> bytes:
    return json.dumps({"op": int(op), "d": payload}, separators=(",", ":")).encode("utf-8")


def make_client_properties(client_name: str = DEFAULT_CLIENT_NAME) -> Dict[str, str]:
    """Static identification block sent with identify."""

    name = _require_plain_string("client_name", client_name)
    return {"os": name, "browser": name, "device": name}


def encode_identify(
    token: str,
    intents: int = DEFAULT_INTENTS,
    *,
    properties: Optional[Dict[str, str]] = None,
) -> bytes:
    """Build the identify envelope (op 2)."""

    payload = {
        "token": _require_plain_string("token", token),
        "intents": _require_non_negative_int("intents", intents),
        "properties": properties if properties is not None else make_client_properties(),
    }
    return _encode(Opcode.IDENTIFY, payload)


def encode_heartbeat(sequence: Optional[int]) -> bytes:
    """Build the heartbeat envelope (op 1); ``None`` means no sequence seen yet."""

    if sequence is not None:
        sequence = _require_non_negative_int("sequence", sequence)
    return _encode(Opcode.HEARTBEAT, sequence)


def encode_resume(session_id: str, sequence: int, *, token: Optional[str] = None) -> bytes:
    """Build the resume envelope (op 6)."""

    payload: Dict[str, Any] = {}
    if token is not None:
        payload["token"] = _require_plain_string("token", token)
    payload["session_id"] = _require_plain_string("session_id", session_id)
    payload["seq"] = _require_non_negative_int("sequence", sequence)
    return _encode(Opcode.RESUME, payload)


__all__ = [
    "DEFAULT_CLIENT_NAME",
    "Envelope",
    "decode",
    "encode_heartbeat",
    "encode_identify",
    "encode_resume",
    "make_client_properties",
]
