"""WebSocket transport implementation."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional, Union

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidStatus

from gateway.config import GatewaySettings
from gateway.errors import TransportError
from gateway.network.transport.base import BaseTransport, Closed, Fragment, TransportEvent
from gateway.protocol.opcodes import CloseCode

LOGGER = logging.getLogger(__name__)

_QueueItem = Union[Fragment, Closed, BaseException]


class WebSocketTransport(BaseTransport):
    """Gateway transport over the ``websockets`` asyncio client.

    A reader task streams frames of each message into a queue so that
    ``poll`` can wait with a timeout without cancelling a half-read message.
    """

    def __init__(self, settings: GatewaySettings) -> None:
        self._settings = settings
        self._ws: Optional[ClientConnection] = None
        self._events: asyncio.Queue[_QueueItem] = asyncio.Queue()
        self._reader: Optional[asyncio.Task[None]] = None

    async def connect(self, url: str) -> None:
        LOGGER.info("Connecting to gateway WebSocket at %s", url)
        max_size = self._settings.max_message_bytes or None
        try:
            self._ws = await connect(
                url,
                open_timeout=self._settings.open_timeout_seconds,
                close_timeout=self._settings.close_timeout_seconds,
                max_size=max_size,
            )
        except InvalidStatus as exc:
            raise TransportError(str(exc), code=exc.response.status_code) from exc
        except (OSError, asyncio.TimeoutError) as exc:
            raise TransportError(f"WebSocket connect failed: {exc}") from exc
        except Exception as exc:  # noqa: BLE001
            raise TransportError(f"WebSocket handshake failed: {exc}") from exc
        self._events = asyncio.Queue()
        self._reader = asyncio.create_task(self._read_loop(self._ws), name="gateway-ws-reader")

    async def send(self, payload: bytes) -> None:
        if not self._ws:
            raise TransportError("WebSocket transport not connected")
        LOGGER.debug("WebSocket send: %s bytes", len(payload))
        try:
            await self._ws.send(payload.decode("utf-8"))
        except ConnectionClosed as exc:
            raise TransportError(f"WebSocket closed during send: {exc}", code=_close_code(exc)) from exc

    async def poll(self, timeout: float) -> Optional[TransportEvent]:
        if not self._ws:
            raise TransportError("WebSocket transport not connected")
        try:
            item = self._events.get_nowait()
        except asyncio.QueueEmpty:
            if timeout <= 0:
                return None
            try:
                item = await asyncio.wait_for(self._events.get(), timeout=timeout)
            except asyncio.TimeoutError:
                return None
        if isinstance(item, BaseException):
            raise TransportError(f"WebSocket receive failed: {item}") from item
        return item

    async def close(self, code: int = CloseCode.NORMAL, reason: str = "") -> None:
        reader, self._reader = self._reader, None
        if reader:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        ws, self._ws = self._ws, None
        if ws:
            LOGGER.info("Closing WebSocket transport (code=%s)", int(code))
            await ws.close(int(code), reason)

    async def _read_loop(self, ws: ClientConnection) -> None:
        try:
            while True:
                pending: Optional[bytes] = None
                async for chunk in ws.recv_streaming(decode=False):
                    if pending is not None:
                        await self._events.put(Fragment(pending, final=False))
                    pending = bytes(chunk)
                await self._events.put(Fragment(pending if pending is not None else b"", final=True))
        except ConnectionClosed as exc:
            code = _close_code(exc)
            reason = exc.rcvd.reason if exc.rcvd is not None else ""
            LOGGER.debug("WebSocket closed by peer code=%s reason=%s", code, reason)
            await self._events.put(Closed(code, reason))
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("WebSocket reader failed", exc_info=True)
            await self._events.put(exc)


def _close_code(exc: ConnectionClosed) -> int:
    if exc.rcvd is not None:
        return exc.rcvd.code
    return int(CloseCode.ABNORMAL)
