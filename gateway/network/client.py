"""Gateway client facade: drives the connection and routes dispatch events."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import random
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from gateway.config import GatewaySettings
from gateway.errors import GatewayError
from gateway.network.connection import Clock, GatewayConnection
from gateway.network.transport.base import BaseTransport
from gateway.protocol.codec import Envelope

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Envelope], Awaitable[None]]
ErrorHook = Callable[[Exception], Awaitable[None] | None]

WILDCARD = "*"


@dataclass
class GatewayClient:
    """Owns one ``GatewayConnection`` and fans dispatch events out to handlers."""

    settings: GatewaySettings
    transport_factory: Callable[[GatewaySettings], BaseTransport]
    token: Optional[str] = None
    intents: Optional[int] = None
    clock: Optional[Clock] = None
    rng: Optional[random.Random] = None

    connection: Optional[GatewayConnection] = field(default=None, init=False, repr=False)
    _poll_task: Optional[asyncio.Task[None]] = field(default=None, init=False, repr=False)
    _route_task: Optional[asyncio.Task[None]] = field(default=None, init=False, repr=False)
    _handlers: Dict[str, List[Handler]] = field(default_factory=lambda: defaultdict(list), init=False, repr=False)
    _error_hooks: List[ErrorHook] = field(default_factory=list, init=False, repr=False)

    def _ensure_connection(self) -> GatewayConnection:
        if self.connection is None:
            self.connection = GatewayConnection(
                self.settings,
                self.transport_factory,
                token=self.token,
                intents=self.intents,
                clock=self.clock,
                rng=self.rng,
            )
        return self.connection

    async def start(self) -> None:
        connection = self._ensure_connection()
        try:
            await connection.connect()
        except GatewayError as exc:
            await self._run_hooks(self._error_hooks, exc)
            raise
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop(), name="gateway-poll")
        if self._route_task is None or self._route_task.done():
            self._route_task = asyncio.create_task(self._route_loop(), name="gateway-router")

    async def stop(self) -> None:
        for task in (self._poll_task, self._route_task):
            if task:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._poll_task = None
        self._route_task = None
        if self.connection is not None:
            await self.connection.close()

    async def wait_closed(self) -> None:
        """Wait until the poll loop ends (terminal error or ``stop()``)."""

        task = self._poll_task
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _poll_loop(self) -> None:
        assert self.connection is not None
        timeout = self.settings.poll_timeout_seconds
        try:
            while True:
                await self.connection.poll(timeout)
        except asyncio.CancelledError:
            raise
        except GatewayError as exc:
            LOGGER.error("Gateway connection stopped: %s", exc)
            await self._run_hooks(self._error_hooks, exc)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Gateway poll loop crashed")
            await self._run_hooks(self._error_hooks, exc)

    async def _route_loop(self) -> None:
        assert self.connection is not None
        try:
            async for envelope in self.connection.messages():
                await self._dispatch(envelope)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            LOGGER.exception("Dispatch routing loop crashed")

    async def _dispatch(self, envelope: Envelope) -> None:
        event = envelope.event or ""
        handlers = list(self._handlers.get(event, [])) + list(self._handlers.get(WILDCARD, []))
        if not handlers:
            LOGGER.debug("No handler registered for %s", event)
            return
        timeout = float(self.settings.dispatch_timeout_seconds or 0)
        for handler in handlers:
            try:
                if timeout > 0:
                    await asyncio.wait_for(handler(envelope), timeout=timeout)
                else:
                    await handler(envelope)
            except asyncio.CancelledError:
                raise
            except asyncio.TimeoutError as exc:
                LOGGER.warning("Handler timed out for %s after %.2fs: %s", event, timeout, exc)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Handler error for %s", event)

    def register_handler(self, event_name: str, handler: Handler) -> None:
        """Register a handler for a dispatch event name, or ``"*"`` for all of them."""
        LOGGER.debug("Registering handler for %s: %s", event_name, handler)
        self._handlers[event_name].append(handler)

    def unregister_handler(self, event_name: str, handler: Handler) -> None:
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def add_error_hook(self, hook: ErrorHook) -> None:
        """Register a hook invoked with the error that ended the connection."""
        self._error_hooks.append(hook)

    async def _run_hooks(self, hooks: List[Callable], *args: Any) -> None:
        for hook in list(hooks):
            try:
                result = hook(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                LOGGER.exception("Lifecycle hook failed: %s", hook)


__all__ = ["GatewayClient", "Handler", "WILDCARD"]
