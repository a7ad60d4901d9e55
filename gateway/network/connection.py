"""Gateway connection: owns the transport, heartbeat and session lifecycle."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from typing import AsyncIterator, Callable, Optional
from urllib.parse import urlsplit, urlunsplit

from gateway.config import GatewaySettings
from gateway.errors import (
    AuthenticationFailed,
    BufferGrowthError,
    InvalidParamError,
    InvalidStateError,
    MalformedEnvelopeError,
    MessageTooLargeError,
)
from gateway.network.heartbeat import HeartbeatScheduler
from gateway.network.reassembly import FrameReassembler
from gateway.network.session_state import LIVE_STATES, ConnectionState, SessionManager, StateTracker
from gateway.network.transport.base import BaseTransport, Closed, Fragment
from gateway.protocol.codec import (
    Envelope,
    decode,
    encode_heartbeat,
    encode_identify,
    encode_resume,
    make_client_properties,
)
from gateway.protocol.opcodes import EVENT_READY, EVENT_RESUMED, CloseCode, Opcode

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class GatewayConnection:
    """One gateway connection driven by repeated ``poll()`` calls.

    ``poll`` is the only place where progress happens: it reopens the
    transport when a reconnect is pending, sends heartbeats that fell due,
    waits for the next transport event and runs it through reassembly,
    decoding and the state machine. It returns the decoded envelope, or
    ``None`` when the wait ended without a complete message.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        transport_factory: Callable[[GatewaySettings], BaseTransport],
        *,
        token: Optional[str] = None,
        intents: Optional[int] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._settings = settings
        self._transport_factory = transport_factory
        self._transport: Optional[BaseTransport] = None
        self._token = token if token is not None else settings.token
        self._intents = intents if intents is not None else settings.intents
        self._clock = clock or monotonic_ms
        self._rng = rng or random.Random()
        self._tracker = StateTracker()
        self._session = SessionManager()
        self._heartbeat = HeartbeatScheduler(
            jitter_ratio=settings.heartbeat_jitter_ratio,
            rng=self._rng,
        )
        self._reassembler = FrameReassembler(
            settings.reassembly_initial_capacity,
            max_message_bytes=settings.max_message_bytes,
        )
        queue_max = int(settings.dispatch_queue_max or 0)
        self._events: asyncio.Queue[Envelope] = asyncio.Queue(maxsize=queue_max)
        self._events_overflow = settings.dispatch_queue_overflow
        self._events_drops = 0
        self._events_backlog: deque[Envelope] = deque()
        self._identify_payload: Optional[bytes] = None
        self._should_reconnect = False
        self._attempt = 0
        self._retry_at: Optional[float] = None
        self._terminal_error: Optional[AuthenticationFailed] = None
        self._malformed_count = 0
        self._buffer_failures = 0
        self._last_error_type: Optional[str] = None

    @property
    def state(self) -> ConnectionState:
        return self._tracker.state

    @property
    def session(self) -> SessionManager:
        return self._session

    @property
    def sequence(self) -> Optional[int]:
        return self._heartbeat.sequence

    @property
    def should_reconnect(self) -> bool:
        return self._should_reconnect

    @property
    def heartbeat(self) -> HeartbeatScheduler:
        return self._heartbeat

    @property
    def events(self) -> asyncio.Queue[Envelope]:
        return self._events

    @property
    def events_drops(self) -> int:
        return self._events_drops

    @property
    def events_backlog(self) -> int:
        """Dispatch envelopes held back while a bounded queue is full."""

        return len(self._events_backlog)

    @property
    def malformed_count(self) -> int:
        return self._malformed_count

    @property
    def buffer_failures(self) -> int:
        return self._buffer_failures

    @property
    def terminal_error(self) -> Optional[AuthenticationFailed]:
        return self._terminal_error

    def last_error_type(self) -> Optional[str]:
        return self._last_error_type

    async def connect(self) -> None:
        """Open the transport and start the identify handshake.

        Calling it again while the connection is live is a no-op.
        """

        if self.state is ConnectionState.ERROR:
            self._raise_terminal()
        if self.state is not ConnectionState.DISCONNECTED:
            return
        if not self._token:
            raise InvalidParamError("a bot token is required to connect")
        self._identify_payload = encode_identify(
            self._token,
            self._intents,
            properties=make_client_properties(self._settings.client_name),
        )
        self._tracker.transition(ConnectionState.CONNECTING)
        self._attempt = 0
        self._retry_at = None
        await self._reopen()

    async def poll(self, timeout: Optional[float] = None) -> Optional[Envelope]:
        """Advance the connection by at most ``timeout`` seconds."""

        if timeout is None:
            timeout = self._settings.poll_timeout_seconds
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout < 0:
            raise InvalidParamError("timeout must be a non-negative number of seconds")
        if self.state is ConnectionState.ERROR:
            self._raise_terminal()
        if self.state not in LIVE_STATES:
            raise InvalidStateError(f"cannot poll a connection in state {self.state.value}")

        self._drain_events_backlog()
        deadline = self._clock() + timeout * 1000.0
        if self._transport is None:
            if not await self._wait_for_retry(deadline):
                return None
            await self._reopen()
            if self._transport is None:
                return None

        await self._service_heartbeat()
        if self._transport is None:
            return None

        wait_ms = max(0.0, deadline - self._clock())
        heartbeat_deadline = self._next_heartbeat_deadline()
        if heartbeat_deadline is not None:
            wait_ms = min(wait_ms, max(0.0, heartbeat_deadline - self._clock()))

        try:
            event = await self._transport.poll(wait_ms / 1000.0)
        except Exception as exc:  # noqa: BLE001
            await self._handle_transport_failure(exc)
            return None

        if event is None:
            await self._service_heartbeat()
            return None
        if isinstance(event, Closed):
            await self._handle_close(event)
            return None
        return await self._handle_fragment(event)

    async def messages(self) -> AsyncIterator[Envelope]:
        """Async iterator over queued dispatch envelopes."""

        while True:
            self._drain_events_backlog()
            yield await self._events.get()

    async def close(self) -> None:
        """Close gracefully and release the buffer, heartbeat and session."""

        if self.state is ConnectionState.ERROR:
            self._release()
            return
        if self.state in {ConnectionState.DISCONNECTED, ConnectionState.CLOSING}:
            self._release()
            return
        self._tracker.transition(ConnectionState.CLOSING)
        LOGGER.info("Closing gateway connection")
        await self._drop_transport(CloseCode.NORMAL, "client shutdown")
        self._release()
        self._tracker.transition(ConnectionState.DISCONNECTED)

    async def _reopen(self) -> None:
        self._attempt += 1
        self._retry_at = None
        url = self._connect_url()
        try:
            transport = self._transport_factory(self._settings)
            await transport.connect(url)
        except Exception as exc:  # noqa: BLE001
            await self._handle_transport_failure(exc)
            return
        self._transport = transport
        self._tracker.transition(ConnectionState.CONNECTED)
        LOGGER.info("Gateway transport connected (attempt %s)", self._attempt)
        await self._identify_or_resume()

    async def _identify_or_resume(self) -> None:
        self._tracker.transition(ConnectionState.IDENTIFYING)
        session_id = self._session.session_id
        if self._session.resumable and session_id is not None and self.sequence is not None:
            LOGGER.info("Resuming gateway session %s at sequence %s", session_id, self.sequence)
            payload = encode_resume(session_id, self.sequence, token=self._token)
        else:
            if self._session.resumable:
                LOGGER.info("No sequence recorded for session %s; identifying fresh", session_id)
                self._session.clear()
            LOGGER.info("Identifying with gateway (intents=%s)", self._intents)
            assert self._identify_payload is not None
            payload = self._identify_payload
        await self._send(payload)

    def _connect_url(self) -> str:
        gateway_url = str(self._settings.gateway_url)
        resume_url = self._session.resume_url
        if not self._session.resumable or resume_url is None:
            return gateway_url
        return _with_query(resume_url, urlsplit(gateway_url).query)

    async def _wait_for_retry(self, deadline: float) -> bool:
        if self._retry_at is None:
            return True
        now = self._clock()
        wait_ms = min(self._retry_at, deadline) - now
        if wait_ms > 0:
            await asyncio.sleep(wait_ms / 1000.0)
        return self._clock() >= self._retry_at

    async def _send(self, payload: bytes) -> bool:
        if self._transport is None:
            return False
        try:
            await self._transport.send(payload)
        except Exception as exc:  # noqa: BLE001
            await self._handle_transport_failure(exc)
            return False
        return True

    async def _drop_transport(self, code: int, reason: str = "") -> None:
        transport, self._transport = self._transport, None
        self._reassembler.discard()
        if transport is None:
            return
        try:
            await asyncio.wait_for(
                transport.close(code, reason),
                timeout=self._settings.close_timeout_seconds,
            )
        except Exception:  # noqa: BLE001
            LOGGER.debug("Suppress transport close error", exc_info=True)

    def _release(self) -> None:
        self._reassembler.release()
        self._heartbeat.reset()
        self._session.clear()
        self._heartbeat.clear_sequence()
        self._should_reconnect = False
        self._retry_at = None

    def _next_heartbeat_deadline(self) -> Optional[float]:
        if not self._heartbeat.active:
            return None
        if self.state is ConnectionState.READY:
            return self._heartbeat.next_deadline(self._settings.heartbeat_ack_grace_ms)
        return self._heartbeat.next_due_ms

    async def _service_heartbeat(self) -> None:
        if self._transport is None or not self._heartbeat.active:
            return
        now = self._clock()
        if self.state is ConnectionState.READY:
            if self._heartbeat.ack_overdue(now, self._settings.heartbeat_ack_grace_ms):
                LOGGER.warning(
                    "No heartbeat ack within %sms of the last heartbeat; reconnecting",
                    self._heartbeat.interval_ms + self._settings.heartbeat_ack_grace_ms,
                )
                await self._begin_reconnect(immediate=True)
                return
            if self._heartbeat.awaiting_ack:
                return
        if self._heartbeat.is_due(now):
            await self._send_heartbeat()

    async def _send_heartbeat(self) -> None:
        LOGGER.debug("Sending heartbeat (sequence=%s)", self.sequence)
        if await self._send(encode_heartbeat(self.sequence)) and self._heartbeat.active:
            self._heartbeat.on_sent(self._clock())

    async def _handle_fragment(self, fragment: Fragment) -> Optional[Envelope]:
        try:
            message = self._reassembler.append(fragment.data, fragment.final)
        except MessageTooLargeError as exc:
            self._malformed_count += 1
            LOGGER.warning("Dropping oversized gateway message: %s", exc)
            return None
        except BufferGrowthError as exc:
            self._reassembler.skip(fragment.final)
            self._buffer_failures += 1
            LOGGER.error("Dropping gateway message after a failed buffer allocation: %s", exc)
            return None
        if message is None:
            return None
        try:
            envelope = decode(message, max_depth=self._settings.max_nesting_depth)
            await self._handle_envelope(envelope)
        except (MalformedEnvelopeError, InvalidParamError) as exc:
            self._malformed_count += 1
            LOGGER.warning("Dropping malformed gateway message: %s", exc)
            return None
        return envelope

    async def _handle_envelope(self, envelope: Envelope) -> None:
        if envelope.sequence is not None:
            if envelope.sequence < 0:
                raise MalformedEnvelopeError(f"negative sequence {envelope.sequence}")
            self._heartbeat.record_sequence(envelope.sequence)

        op = envelope.op
        if op == Opcode.DISPATCH:
            await self._on_dispatch(envelope)
        elif op == Opcode.HELLO:
            interval = envelope.payload_int("heartbeat_interval")
            first_due = self._heartbeat.on_hello(interval, self._clock())
            LOGGER.debug("Hello received: heartbeat interval %sms, first beat at %.0f", interval, first_due)
        elif op == Opcode.HEARTBEAT_ACK:
            self._heartbeat.on_ack(self._clock())
        elif op == Opcode.HEARTBEAT:
            LOGGER.debug("Gateway requested an immediate heartbeat")
            await self._send_heartbeat()
        elif op == Opcode.RECONNECT:
            LOGGER.warning("Gateway requested a reconnect")
            await self._begin_reconnect(immediate=True)
        elif op == Opcode.INVALID_SESSION:
            if envelope.payload_bool():
                LOGGER.warning("Gateway invalidated the session (resumable); reconnecting")
                await self._begin_reconnect(immediate=True)
            else:
                LOGGER.warning("Gateway invalidated the session; starting a fresh one")
                await self._restart_fresh()
        else:
            LOGGER.debug("Ignoring gateway opcode %s", op)

    async def _on_dispatch(self, envelope: Envelope) -> None:
        if envelope.event == EVENT_READY:
            session_id = envelope.payload_str("session_id")
            resume_url = envelope.payload_str("resume_gateway_url")
            self._session.set(session_id, resume_url)
            self._mark_ready()
            LOGGER.info("Gateway session %s ready", session_id)
        elif envelope.event == EVENT_RESUMED:
            self._mark_ready()
            LOGGER.info("Gateway session %s resumed", self._session.session_id)
        self._enqueue(envelope)

    def _mark_ready(self) -> None:
        if self.state is ConnectionState.IDENTIFYING:
            self._tracker.transition(ConnectionState.READY)
        self._should_reconnect = False
        self._attempt = 0

    def _enqueue(self, envelope: Envelope) -> None:
        self._drain_events_backlog()
        if not self._events.full():
            self._events.put_nowait(envelope)
            return
        if self._events_overflow == "block":
            if not self._events_backlog:
                LOGGER.warning("Event queue full; holding dispatches until the consumer catches up")
            self._events_backlog.append(envelope)
            return
        if self._events_overflow == "drop_new":
            self._events_drops += 1
            LOGGER.warning("Event queue full; dropping dispatch t=%s s=%s", envelope.event, envelope.sequence)
            return
        if self._events_overflow == "drop_oldest":
            try:
                dropped = self._events.get_nowait()
            except asyncio.QueueEmpty:
                pass
            else:
                self._events_drops += 1
                LOGGER.warning(
                    "Event queue full; dropping oldest dispatch t=%s s=%s",
                    dropped.event,
                    dropped.sequence,
                )
            self._events.put_nowait(envelope)

    def _drain_events_backlog(self) -> None:
        while self._events_backlog and not self._events.full():
            self._events.put_nowait(self._events_backlog.popleft())

    def _classify_error(self, exc: Exception) -> str:
        status_code = getattr(exc, "status_code", None)
        if status_code is None:
            status_code = getattr(exc, "code", None)
        if status_code in {401, 403} or status_code in self._settings.fatal_close_codes:
            return "auth"
        if status_code in {400, 404, 426}:
            return "protocol"
        message = str(exc).lower()
        if any(token in message for token in ("unauthorized", "forbidden")):
            return "auth"
        if any(token in message for token in ("protocol", "handshake", "invalid status", "unsupported")):
            return "protocol"
        if any(token in message for token in ("timeout", "timed out", "refused", "unreachable", "reset", "closed")):
            return "network"
        return "unknown"

    async def _handle_transport_failure(self, exc: Exception) -> None:
        error_type = self._classify_error(exc)
        self._last_error_type = error_type
        if error_type == "auth":
            failure = AuthenticationFailed(
                f"gateway rejected the credentials: {exc}",
                code=getattr(exc, "code", None),
            )
            failure.__cause__ = exc
            await self._fail(failure)
        LOGGER.warning("Gateway transport error (%s), will reconnect: %s", error_type, exc)
        await self._begin_reconnect(immediate=False)

    async def _handle_close(self, event: Closed) -> None:
        code = event.code
        if code in self._settings.fatal_close_codes:
            await self._fail(AuthenticationFailed(f"gateway closed the connection with code {code}", code=code))
        if code in self._settings.session_reset_close_codes:
            LOGGER.warning("Gateway closed with code %s; session can no longer be resumed", code)
            self._session.clear()
            self._heartbeat.clear_sequence()
        LOGGER.warning("Gateway closed the connection (code=%s reason=%s); reconnecting", code, event.reason)
        await self._begin_reconnect(immediate=False)

    async def _begin_reconnect(self, *, immediate: bool) -> None:
        await self._drop_transport(self._reconnect_close_code(), "reconnecting")
        self._heartbeat.reset()
        self._should_reconnect = True
        self._tracker.transition(ConnectionState.RECONNECTING)
        self._retry_at = None if immediate else self._clock() + self._backoff_delay() * 1000.0

    async def _restart_fresh(self) -> None:
        await self._drop_transport(CloseCode.NORMAL, "session invalidated")
        self._heartbeat.reset()
        self._session.clear()
        self._heartbeat.clear_sequence()
        self._should_reconnect = False
        self._tracker.transition(ConnectionState.CONNECTING)
        self._retry_at = None

    def _reconnect_close_code(self) -> int:
        # Closing with 1000 makes the gateway drop the session.
        if self._session.resumable:
            return int(CloseCode.UNKNOWN_ERROR)
        return int(CloseCode.NORMAL)

    def _backoff_delay(self) -> float:
        attempt = max(1, self._attempt)
        base = self._settings.reconnect_base_delay_seconds
        max_delay = self._settings.reconnect_max_delay_seconds
        jitter = self._settings.reconnect_jitter
        delay = min(max_delay, base * (2 ** (attempt - 1)))
        jitter_factor = self._rng.uniform(1 - jitter, 1 + jitter)
        sleep_for = max(0.1, delay * jitter_factor)
        LOGGER.warning("Reconnect attempt %s scheduled in %.2fs", attempt, sleep_for)
        return sleep_for

    async def _fail(self, error: AuthenticationFailed) -> None:
        LOGGER.error("Gateway connection failed permanently: %s", error)
        self._terminal_error = error
        await self._drop_transport(CloseCode.NORMAL)
        self._release()
        self._tracker.transition(ConnectionState.ERROR)
        raise error

    def _raise_terminal(self) -> None:
        raise InvalidStateError("connection is in a terminal error state") from self._terminal_error


def _with_query(url: str, query: str) -> str:
    parts = urlsplit(url)
    if parts.query or not query:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", query, parts.fragment))


__all__ = ["GatewayConnection", "monotonic_ms"]
