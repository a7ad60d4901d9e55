"""Transport implementations for the gateway connection."""

from .base import BaseTransport, Closed, Fragment, TransportEvent
from .dummy import DummyTransport
from .websocket import WebSocketTransport

__all__ = ["BaseTransport", "Closed", "Fragment", "TransportEvent", "DummyTransport", "WebSocketTransport"]
