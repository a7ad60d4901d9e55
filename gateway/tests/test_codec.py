import json

import pytest

from gateway.errors import InvalidParamError, MalformedEnvelopeError
from gateway.protocol.codec import (
    Envelope,
    decode,
    encode_heartbeat,
    encode_identify,
    encode_resume,
    make_client_properties,
)
from gateway.protocol.opcodes import DEFAULT_INTENTS, Opcode
from gateway.protocol.scanner import ValueKind


def test_decode_hello_interval():
    envelope = decode(b'{"op":10,"d":{"heartbeat_interval":41250}}')

    assert envelope.op == Opcode.HELLO
    assert envelope.payload_int("heartbeat_interval") == 41250
    assert envelope.sequence is None
    assert envelope.event is None


def test_decode_hello_with_trace_escapes():
    message = (
        '{"t":null,"s":null,"op":10,"d":{"heartbeat_interval":41250,'
        '"_trace":["[\\"gateway-prd-us-east1-b-0568\\",{\\"micros\\":0.0}]"]}}'
    )

    envelope = decode(message.encode("utf-8"))

    assert envelope.op == 10
    assert envelope.payload_int("heartbeat_interval") == 41250


def test_decode_dispatch_fields():
    envelope = decode(b'{"op":0,"s":42,"t":"MESSAGE_CREATE","d":{"content":"hi"}}')

    assert envelope.op == Opcode.DISPATCH
    assert envelope.sequence == 42
    assert envelope.event == "MESSAGE_CREATE"
    assert envelope.payload == b'{"content":"hi"}'
    assert envelope.payload_str("content") == "hi"


def test_decode_missing_payload_defaults_to_null():
    envelope = decode(b'{"op":11}')

    assert envelope.payload_value().kind is ValueKind.NULL


@pytest.mark.parametrize(
    "message",
    [
        b"{invalid}",
        b"[1,2]",
        b'{"d":null}',
        b'{"op":"10"}',
        b'{"op":1.5}',
        b'{"op":0,"s":"7"}',
        b'{"op":0,"t":5}',
        b'{"op":10,"d":{"heartbeat_interval":41250}',
    ],
)
def test_decode_rejects_malformed(message):
    with pytest.raises(MalformedEnvelopeError):
        decode(message)


def test_payload_member_errors_are_malformed():
    envelope = decode(b'{"op":10,"d":{"other":1}}')

    with pytest.raises(MalformedEnvelopeError):
        envelope.payload_int("heartbeat_interval")
    with pytest.raises(MalformedEnvelopeError):
        decode(b'{"op":9,"d":null}').payload_str("session_id")


def test_heartbeat_round_trip():
    with_seq = decode(encode_heartbeat(42))
    without_seq = decode(encode_heartbeat(None))

    assert with_seq.op == Opcode.HEARTBEAT
    assert with_seq.payload_value().as_int() == 42
    assert without_seq.op == Opcode.HEARTBEAT
    assert without_seq.payload_value().is_null


def test_identify_round_trip():
    envelope = decode(encode_identify("TOKEN", 513))

    assert envelope.op == Opcode.IDENTIFY
    assert envelope.payload_str("token") == "TOKEN"
    assert envelope.payload_int("intents") == 513
    properties = envelope.payload_member("properties").members()
    assert {key: value.as_str() for key, value in properties.items()} == make_client_properties()


def test_identify_is_compact_json():
    raw = encode_identify("TOKEN", properties={"os": "linux", "browser": "bot", "device": "bot"})

    assert b" " not in raw
    assert json.loads(raw) == {
        "op": 2,
        "d": {
            "token": "TOKEN",
            "intents": DEFAULT_INTENTS,
            "properties": {"os": "linux", "browser": "bot", "device": "bot"},
        },
    }


def test_resume_round_trip():
    envelope = decode(encode_resume("abc123", 17, token="TOKEN"))

    assert envelope.op == Opcode.RESUME
    assert envelope.payload_str("session_id") == "abc123"
    assert envelope.payload_int("seq") == 17
    assert envelope.payload_str("token") == "TOKEN"


def test_resume_without_token_omits_it():
    payload = json.loads(encode_resume("abc123", 0))["d"]

    assert payload == {"session_id": "abc123", "seq": 0}


@pytest.mark.parametrize("token", ["", 'bad"token', "bad\\token", "bad\ntoken", None, 5])
def test_identify_rejects_unsafe_tokens(token):
    with pytest.raises(InvalidParamError):
        encode_identify(token, 513)


@pytest.mark.parametrize("sequence", [-1, True, 1.0, "3"])
def test_sequence_must_be_non_negative_int(sequence):
    with pytest.raises(InvalidParamError):
        encode_heartbeat(sequence)
    with pytest.raises(InvalidParamError):
        encode_resume("abc", sequence)


def test_resume_rejects_bad_session_id():
    with pytest.raises(InvalidParamError):
        encode_resume("", 1)
    with pytest.raises(InvalidParamError):
        encode_resume('a"b', 1)


def test_invalid_param_is_value_error():
    with pytest.raises(ValueError):
        encode_identify("TOKEN", -1)


def test_envelope_is_frozen():
    envelope = Envelope(op=1)

    with pytest.raises(Exception):
        envelope.op = 2  # type: ignore[misc]


def test_payload_accessors_use_decode_depth():
    nested = "[" * 40 + "]" * 40
    message = ('{"op":0,"t":"NESTED","s":1,"d":{"deep":%s}}' % nested).encode("utf-8")

    envelope = decode(message, max_depth=64)

    assert envelope.max_depth == 64
    assert envelope.payload_member("deep").kind is ValueKind.ARRAY


def test_payload_accessors_enforce_envelope_depth():
    envelope = Envelope(op=0, payload=b'{"a":[[1]]}', max_depth=2)

    with pytest.raises(MalformedEnvelopeError):
        envelope.payload_member("a")
