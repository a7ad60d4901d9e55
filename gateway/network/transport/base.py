"""Transport abstractions for the gateway connection."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

from gateway.protocol.opcodes import CloseCode


@dataclass(frozen=True)
class Fragment:
    """A piece of one inbound message; ``final`` marks its last piece."""

    data: bytes
    final: bool = True


@dataclass(frozen=True)
class Closed:
    """The peer (or the network) closed the connection."""

    code: int
    reason: str = ""


TransportEvent = Union[Fragment, Closed]


class BaseTransport(ABC):
    """Abstract message-framed transport used by the gateway connection.

    ``poll`` waits at most ``timeout`` seconds and returns ``None`` when
    nothing arrived; failures are raised as ``TransportError``.
    """

    @abstractmethod
    async def connect(self, url: str) -> None:
        ...

    @abstractmethod
    async def send(self, payload: bytes) -> None:
        ...

    @abstractmethod
    async def poll(self, timeout: float) -> Optional[TransportEvent]:
        ...

    @abstractmethod
    async def close(self, code: int = CloseCode.NORMAL, reason: str = "") -> None:
        ...
