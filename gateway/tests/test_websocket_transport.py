from http import HTTPStatus

import pytest
from websockets.asyncio.server import serve

from gateway.config import GatewaySettings
from gateway.errors import TransportError
from gateway.network.transport.base import Closed, Fragment
from gateway.network.transport.websocket import WebSocketTransport

HELLO = '{"op":10,"d":{"heartbeat_interval":41250}}'


async def _next_event(transport: WebSocketTransport, attempts: int = 20):
    for _ in range(attempts):
        event = await transport.poll(0.25)
        if event is not None:
            return event
    raise AssertionError("no transport event received")


def _port(server) -> int:
    return next(iter(server.sockets)).getsockname()[1]


@pytest.mark.asyncio
async def test_websocket_transport_round_trip():
    received = []

    async def handler(ws):
        await ws.send(HELLO)
        await ws.send(['{"op":0,', '"d":null}'])
        received.append(await ws.recv())
        await ws.close(4004, "Authentication failed.")

    async with serve(handler, "127.0.0.1", 0) as server:
        transport = WebSocketTransport(GatewaySettings(transport="websocket"))
        await transport.connect(f"ws://127.0.0.1:{_port(server)}")

        assert await _next_event(transport) == Fragment(HELLO.encode("utf-8"), final=True)

        chunks = []
        while True:
            event = await _next_event(transport)
            assert isinstance(event, Fragment)
            chunks.append(event.data)
            if event.final:
                break
        assert b"".join(chunks) == b'{"op":0,"d":null}'

        await transport.send(b'{"op":1,"d":null}')
        assert await _next_event(transport) == Closed(4004, "Authentication failed.")
        await transport.close()

    assert received == ['{"op":1,"d":null}']


@pytest.mark.asyncio
async def test_websocket_poll_times_out_with_none():
    async def handler(ws):
        await ws.wait_closed()

    async with serve(handler, "127.0.0.1", 0) as server:
        transport = WebSocketTransport(GatewaySettings(transport="websocket"))
        await transport.connect(f"ws://127.0.0.1:{_port(server)}")

        assert await transport.poll(0) is None
        assert await transport.poll(0.05) is None
        await transport.close()


@pytest.mark.asyncio
async def test_websocket_rejected_handshake_carries_status():
    async def handler(ws):
        await ws.wait_closed()

    def reject(connection, request):
        return connection.respond(HTTPStatus.UNAUTHORIZED, "Unauthorized\n")

    async with serve(handler, "127.0.0.1", 0, process_request=reject) as server:
        transport = WebSocketTransport(GatewaySettings(transport="websocket"))
        with pytest.raises(TransportError) as excinfo:
            await transport.connect(f"ws://127.0.0.1:{_port(server)}")

    assert excinfo.value.code == 401


@pytest.mark.asyncio
async def test_websocket_requires_connect():
    transport = WebSocketTransport(GatewaySettings(transport="websocket"))

    with pytest.raises(TransportError):
        await transport.poll(0)
    with pytest.raises(TransportError):
        await transport.send(b"{}")
