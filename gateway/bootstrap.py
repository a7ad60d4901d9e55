"""Gateway bootstrap entrypoint for logging and network wiring."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Type

from gateway.config import GatewaySettings, get_settings
from gateway.network.client import GatewayClient
from gateway.network.transport.base import BaseTransport
from gateway.network.transport.dummy import DummyTransport
from gateway.network.transport.websocket import WebSocketTransport
from gateway.protocol.codec import Envelope

LOGGER = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(settings: GatewaySettings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def build_client(settings: Optional[GatewaySettings] = None) -> GatewayClient:
    """Construct a client with the transport selected by ``settings.transport``."""

    settings = settings or get_settings()
    resolved_cls: Type[BaseTransport]
    resolved_cls = WebSocketTransport if settings.transport == "websocket" else DummyTransport
    LOGGER.debug("Initialising gateway client via %s", resolved_cls.__name__)
    client = GatewayClient(settings=settings, transport_factory=lambda s: resolved_cls(s))

    async def _log_event(envelope: Envelope) -> None:
        LOGGER.info("Dispatch %s (s=%s)", envelope.event, envelope.sequence)

    client.register_handler("*", _log_event)
    return client


async def run_forever(settings: Optional[GatewaySettings] = None) -> None:
    """Start the gateway client and keep the process alive until it ends."""

    client = build_client(settings)
    await client.start()
    try:
        await client.wait_closed()
    except asyncio.CancelledError:
        LOGGER.info("Gateway shutdown requested")
        raise
    finally:
        await client.stop()
