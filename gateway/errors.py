"""Error taxonomy shared by the gateway protocol core."""

from __future__ import annotations

from typing import Optional


class GatewayError(RuntimeError):
    """Base class for every error raised by the gateway client."""


class InvalidParamError(GatewayError, ValueError):
    """Raised when a caller violates an input contract (non-retriable)."""


class InvalidStateError(GatewayError):
    """Raised when an operation is invoked in a state that does not allow it."""


class NetworkError(GatewayError):
    """Raised when the transport fails; the connection decides retry vs. terminal."""

    def __init__(self, message: str, *, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class TransportError(NetworkError):
    """Raised by transport adapters for connect/send/receive failures."""


class AuthenticationFailed(NetworkError):
    """Terminal failure: the gateway rejected the credentials."""


class MalformedEnvelopeError(GatewayError, ValueError):
    """Raised when an inbound message is not a valid gateway envelope."""


class ScanError(MalformedEnvelopeError):
    """Raised by the scanner on syntactically invalid or truncated JSON."""

    def __init__(self, message: str, position: int) -> None:
        super().__init__(f"{message} at byte {position}")
        self.position = position


class BufferGrowthError(GatewayError, MemoryError):
    """Raised when the reassembly buffer cannot grow; held bytes stay intact."""


class MessageTooLargeError(MalformedEnvelopeError):
    """Raised when an inbound message exceeds the configured size bound."""


__all__ = [
    "GatewayError",
    "InvalidParamError",
    "InvalidStateError",
    "NetworkError",
    "TransportError",
    "AuthenticationFailed",
    "MalformedEnvelopeError",
    "ScanError",
    "BufferGrowthError",
    "MessageTooLargeError",
]
