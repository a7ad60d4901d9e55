from .codec import (
    Envelope,
    decode,
    encode_heartbeat,
    encode_identify,
    encode_resume,
    make_client_properties,
)
from .opcodes import DEFAULT_INTENTS, CloseCode, Intent, Opcode
from .scanner import Scanner, Value, ValueKind, parse

__all__ = [
    "Envelope",
    "decode",
    "encode_heartbeat",
    "encode_identify",
    "encode_resume",
    "make_client_properties",
    "DEFAULT_INTENTS",
    "CloseCode",
    "Intent",
    "Opcode",
    "Scanner",
    "Value",
    "ValueKind",
    "parse",
]
