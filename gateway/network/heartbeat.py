"""Heartbeat timing for the gateway connection (no I/O)."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Optional

from gateway.errors import InvalidParamError


@dataclass
class HeartbeatScheduler:
    """Tracks when the next heartbeat is due and whether an ack is outstanding.

    All timestamps are milliseconds from the caller's monotonic clock.
    ``jitter_ratio`` controls the first beat after hello: the offset is
    ``interval * (1 - ratio)`` plus a uniform draw from ``[0, interval * ratio)``.
    A ratio of 1 spreads the first beat over the whole interval, 0 waits one
    full interval.
    ``sequence`` is the highest sequence number seen, echoed in each heartbeat.
    """

    jitter_ratio: float = 1.0
    rng: random.Random = field(default_factory=random.Random, repr=False)
    interval_ms: int = 0
    last_sent_ms: Optional[float] = None
    last_ack_ms: Optional[float] = None
    next_due_ms: Optional[float] = None
    sequence: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.jitter_ratio <= 1.0:
            raise InvalidParamError("jitter_ratio must be within [0, 1]")

    @property
    def active(self) -> bool:
        return self.interval_ms > 0 and self.next_due_ms is not None

    @property
    def awaiting_ack(self) -> bool:
        if self.last_sent_ms is None:
            return False
        return self.last_ack_ms is None or self.last_ack_ms < self.last_sent_ms

    def on_hello(self, interval_ms: int, now: float) -> float:
        """Start a new heartbeat cycle; returns the first due time."""

        if isinstance(interval_ms, bool) or not isinstance(interval_ms, int) or interval_ms <= 0:
            raise InvalidParamError("heartbeat interval must be a positive integer")
        self.interval_ms = interval_ms
        self.last_sent_ms = None
        self.last_ack_ms = None
        window = interval_ms * self.jitter_ratio
        offset = (interval_ms - window) + self.rng.random() * window
        self.next_due_ms = now + offset
        return self.next_due_ms

    def is_due(self, now: float) -> bool:
        return self.next_due_ms is not None and now >= self.next_due_ms

    def on_sent(self, now: float) -> None:
        self.last_sent_ms = now
        self.next_due_ms = now + self.interval_ms

    def on_ack(self, now: float) -> None:
        self.last_ack_ms = now

    def ack_overdue(self, now: float, grace_ms: float) -> bool:
        """True once an outstanding heartbeat went unacknowledged for interval + grace."""

        if not self.awaiting_ack:
            return False
        assert self.last_sent_ms is not None
        return now - self.last_sent_ms >= self.interval_ms + grace_ms

    def next_deadline(self, grace_ms: float) -> Optional[float]:
        """Earliest time the scheduler needs attention: next beat or ack deadline."""

        if not self.active:
            return None
        if self.awaiting_ack:
            assert self.last_sent_ms is not None
            return self.last_sent_ms + self.interval_ms + grace_ms
        return self.next_due_ms

    def record_sequence(self, sequence: int) -> None:
        """Remember ``sequence`` for the next heartbeat if it is the highest seen."""

        if self.sequence is None or sequence > self.sequence:
            self.sequence = sequence

    def clear_sequence(self) -> None:
        self.sequence = None

    def reset(self) -> None:
        """Stop the cycle; the recorded sequence survives for a resume."""

        self.interval_ms = 0
        self.last_sent_ms = None
        self.last_ack_ms = None
        self.next_due_ms = None


__all__ = ["HeartbeatScheduler"]
