import random

import pytest

from gateway.errors import InvalidParamError
from gateway.network.heartbeat import HeartbeatScheduler


class _FixedRandom(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


def test_due_after_full_interval_from_last_send():
    scheduler = HeartbeatScheduler()
    scheduler.on_hello(41250, now=0)
    t0 = 1_000.0

    scheduler.on_sent(t0)

    assert not scheduler.is_due(t0 + 50)
    assert scheduler.is_due(t0 + 41250)


def test_zero_jitter_waits_one_full_interval():
    scheduler = HeartbeatScheduler(jitter_ratio=0.0)

    first_due = scheduler.on_hello(41250, now=500)

    assert first_due == 500 + 41250
    assert not scheduler.is_due(500 + 41249)
    assert scheduler.is_due(500 + 41250)


def test_full_jitter_uses_random_fraction_of_interval():
    scheduler = HeartbeatScheduler(jitter_ratio=1.0, rng=_FixedRandom(0.25))

    assert scheduler.on_hello(40000, now=0) == 10000


def test_partial_jitter_keeps_a_minimum_offset():
    scheduler = HeartbeatScheduler(jitter_ratio=0.5, rng=_FixedRandom(0.0))

    assert scheduler.on_hello(40000, now=0) == 20000


@pytest.mark.parametrize("seed", range(20))
def test_jittered_offset_stays_within_interval(seed):
    scheduler = HeartbeatScheduler(rng=random.Random(seed))

    offset = scheduler.on_hello(41250, now=0)

    assert 0 <= offset < 41250


@pytest.mark.parametrize("interval", [0, -1, True, 1.5, "41250"])
def test_hello_rejects_invalid_interval(interval):
    with pytest.raises(InvalidParamError):
        HeartbeatScheduler().on_hello(interval, now=0)


def test_jitter_ratio_must_be_a_fraction():
    with pytest.raises(InvalidParamError):
        HeartbeatScheduler(jitter_ratio=1.5)


def test_ack_tracking_and_overdue():
    scheduler = HeartbeatScheduler(jitter_ratio=0.0)
    scheduler.on_hello(1000, now=0)
    assert not scheduler.awaiting_ack

    scheduler.on_sent(1000)

    assert scheduler.awaiting_ack
    assert scheduler.next_deadline(500) == 2500
    assert not scheduler.ack_overdue(2499, 500)
    assert scheduler.ack_overdue(2500, 500)

    scheduler.on_ack(1200)

    assert not scheduler.awaiting_ack
    assert not scheduler.ack_overdue(5000, 500)
    assert scheduler.next_deadline(500) == 2000


def test_hello_restarts_cycle():
    scheduler = HeartbeatScheduler(jitter_ratio=0.0)
    scheduler.on_hello(1000, now=0)
    scheduler.on_sent(1000)

    scheduler.on_hello(2000, now=1500)

    assert not scheduler.awaiting_ack
    assert scheduler.next_due_ms == 3500


def test_reset_deactivates():
    scheduler = HeartbeatScheduler(jitter_ratio=0.0)
    scheduler.on_hello(1000, now=0)
    assert scheduler.active

    scheduler.reset()

    assert not scheduler.active
    assert scheduler.next_deadline(500) is None
    assert not scheduler.is_due(10_000)


def test_sequence_keeps_highest_and_survives_reset():
    scheduler = HeartbeatScheduler(jitter_ratio=0.0)
    assert scheduler.sequence is None

    scheduler.record_sequence(4)
    scheduler.record_sequence(2)
    assert scheduler.sequence == 4

    scheduler.on_hello(1000, now=0)
    scheduler.reset()
    assert scheduler.sequence == 4

    scheduler.clear_sequence()
    assert scheduler.sequence is None
