"""Network stack (transport/connection/client) for the gateway."""

from gateway.network.client import GatewayClient
from gateway.network.connection import GatewayConnection
from gateway.network.heartbeat import HeartbeatScheduler
from gateway.network.reassembly import FrameReassembler
from gateway.network.session_state import ConnectionState, SessionManager
from gateway.network.transport.base import BaseTransport
from gateway.network.transport.dummy import DummyTransport
from gateway.network.transport.websocket import WebSocketTransport

__all__ = [
    "GatewayClient",
    "GatewayConnection",
    "HeartbeatScheduler",
    "FrameReassembler",
    "ConnectionState",
    "SessionManager",
    "BaseTransport",
    "WebSocketTransport",
    "DummyTransport",
]
