import asyncio
import json

import pytest

from gateway.config import GatewaySettings
from gateway.errors import AuthenticationFailed, TransportError
from gateway.network.client import GatewayClient
from gateway.network.session_state import ConnectionState
from gateway.network.transport.dummy import DummyTransport
from gateway.protocol.codec import Envelope

READY = {
    "op": 0,
    "s": 1,
    "t": "READY",
    "d": {"session_id": "abc", "resume_gateway_url": "wss://resume.example.test"},
}


def _dispatch_envelope(event: str) -> Envelope:
    return Envelope(op=0, payload=b"{}", sequence=2, event=event)


def _client(**overrides):
    values = {"token": "TOKEN", "transport": "dummy", "poll_timeout_seconds": 0.01}
    values.update(overrides)
    settings = GatewaySettings(**values)
    transports: list[DummyTransport] = []

    def factory(s):
        transport = DummyTransport(s)
        transports.append(transport)
        return transport

    return GatewayClient(settings=settings, transport_factory=factory), transports


@pytest.mark.asyncio
async def test_dispatch_routes_by_event_and_wildcard():
    client, _ = _client()
    seen = []

    async def on_message(envelope):
        seen.append(("message", envelope.event))

    async def on_any(envelope):
        seen.append(("any", envelope.event))

    client.register_handler("MESSAGE_CREATE", on_message)
    client.register_handler("*", on_any)

    await client._dispatch(_dispatch_envelope("MESSAGE_CREATE"))
    await client._dispatch(_dispatch_envelope("GUILD_CREATE"))

    assert seen == [
        ("message", "MESSAGE_CREATE"),
        ("any", "MESSAGE_CREATE"),
        ("any", "GUILD_CREATE"),
    ]


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others():
    client, _ = _client()
    seen = []

    async def broken(envelope):
        raise RuntimeError("boom")

    async def healthy(envelope):
        seen.append(envelope.event)

    client.register_handler("MESSAGE_CREATE", broken)
    client.register_handler("MESSAGE_CREATE", healthy)

    await client._dispatch(_dispatch_envelope("MESSAGE_CREATE"))

    assert seen == ["MESSAGE_CREATE"]


@pytest.mark.asyncio
async def test_handler_timeout_is_isolated():
    client, _ = _client(dispatch_timeout_seconds=0.01)
    seen = []

    async def slow(envelope):
        await asyncio.sleep(1)

    async def fast(envelope):
        seen.append(envelope.event)

    client.register_handler("MESSAGE_CREATE", slow)
    client.register_handler("MESSAGE_CREATE", fast)

    await client._dispatch(_dispatch_envelope("MESSAGE_CREATE"))

    assert seen == ["MESSAGE_CREATE"]


@pytest.mark.asyncio
async def test_unregister_handler():
    client, _ = _client()
    seen = []

    async def handler(envelope):
        seen.append(envelope.event)

    client.register_handler("MESSAGE_CREATE", handler)
    client.unregister_handler("MESSAGE_CREATE", handler)
    client.unregister_handler("MESSAGE_CREATE", handler)

    await client._dispatch(_dispatch_envelope("MESSAGE_CREATE"))

    assert seen == []


@pytest.mark.asyncio
async def test_start_routes_ready_and_stop_closes():
    client, transports = _client()
    received = asyncio.Event()
    events = []

    async def on_ready(envelope):
        events.append(envelope.payload_str("session_id"))
        received.set()

    client.register_handler("READY", on_ready)
    await client.start()
    transports[-1].feed(json.dumps(READY))

    await asyncio.wait_for(received.wait(), timeout=1)
    await client.stop()

    assert events == ["abc"]
    assert client.connection is not None
    assert client.connection.state is ConnectionState.DISCONNECTED
    assert transports[-1].close_calls == [1000]


@pytest.mark.asyncio
async def test_terminal_error_reaches_error_hook():
    client, transports = _client()
    errors = []
    client.add_error_hook(errors.append)

    await client.start()
    transports[-1].feed_close(4004, "Authentication failed.")
    await asyncio.wait_for(client.wait_closed(), timeout=1)
    await client.stop()

    assert len(errors) == 1
    assert isinstance(errors[0], AuthenticationFailed)
    assert client.connection.state is ConnectionState.ERROR


@pytest.mark.asyncio
async def test_start_failure_runs_error_hook_and_raises():
    client, _ = _client()
    errors = []

    async def hook(exc):
        errors.append(exc)

    client.add_error_hook(hook)
    connection = client._ensure_connection()
    connection._transport_factory = lambda s: _rejecting_transport(s)

    with pytest.raises(AuthenticationFailed):
        await client.start()

    assert len(errors) == 1


def _rejecting_transport(settings) -> DummyTransport:
    transport = DummyTransport(settings)
    transport.connect_error = TransportError("HTTP 403", code=403)
    return transport
