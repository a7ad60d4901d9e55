"""In-memory transport for offline runs and tests."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Optional, Union

from gateway.errors import TransportError
from gateway.network.transport.base import BaseTransport, Closed, Fragment, TransportEvent
from gateway.protocol.opcodes import CloseCode

LOGGER = logging.getLogger(__name__)


class DummyTransport(BaseTransport):
    """Scripted transport: inbound events are fed by the caller, sends are recorded."""

    def __init__(self, settings: Any = None) -> None:
        self._settings = settings
        self._inbound: deque[Union[TransportEvent, Exception]] = deque()
        self.sent: list[bytes] = []
        self.connected_urls: list[str] = []
        self.close_calls: list[int] = []
        self.connect_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.is_open = False

    def feed(self, data: Union[bytes, str], *, final: bool = True) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._inbound.append(Fragment(data, final=final))

    def feed_fragments(self, *chunks: Union[bytes, str]) -> None:
        for index, chunk in enumerate(chunks):
            self.feed(chunk, final=index == len(chunks) - 1)

    def feed_close(self, code: int, reason: str = "") -> None:
        self._inbound.append(Closed(code, reason))

    def feed_error(self, exc: Exception) -> None:
        self._inbound.append(exc)

    async def connect(self, url: str) -> None:
        LOGGER.debug("Dummy transport connect(%s)", url)
        self.connected_urls.append(url)
        if self.connect_error is not None:
            raise self.connect_error
        self.is_open = True

    async def send(self, payload: bytes) -> None:
        if not self.is_open:
            raise TransportError("Dummy transport not connected")
        if self.send_error is not None:
            raise self.send_error
        LOGGER.debug("Dummy transport send(): %s", payload)
        self.sent.append(bytes(payload))

    async def poll(self, timeout: float) -> Optional[TransportEvent]:
        if not self.is_open:
            raise TransportError("Dummy transport not connected")
        await asyncio.sleep(0 if self._inbound else timeout)
        if not self._inbound:
            return None
        item = self._inbound.popleft()
        if isinstance(item, Exception):
            raise item
        if isinstance(item, Closed):
            self.is_open = False
        return item

    async def close(self, code: int = CloseCode.NORMAL, reason: str = "") -> None:
        LOGGER.debug("Dummy transport close(%s)", code)
        self.close_calls.append(int(code))
        self.is_open = False
