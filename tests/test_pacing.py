"""
Tests for the pacers used between provider calls.
"""

import pytest

from app.core.config import settings
from app.core.pacing import FixedDelayPacer, NoopPacer, TokenBucketPacer, default_pacer


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestFixedDelayPacer:
    """Tests for FixedDelayPacer and default_pacer."""

    def test_sleeps_fixed_delay_every_call(self):
        clock = FakeClock()
        pacer = FixedDelayPacer(0.1, sleep=clock.sleep)

        for _ in range(3):
            pacer.pace()

        assert clock.sleeps == [0.1, 0.1, 0.1]

    def test_zero_delay_never_sleeps(self):
        clock = FakeClock()
        FixedDelayPacer(0, sleep=clock.sleep).pace()
        assert clock.sleeps == []

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError):
            FixedDelayPacer(-1)

    def test_default_pacer_uses_configured_delay(self, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_DELAY_MS", 250)
        assert default_pacer().delay_seconds == 0.25

    def test_default_pacer_can_select_token_bucket(self, monkeypatch):
        monkeypatch.setattr(settings, "PACER", "token_bucket")
        monkeypatch.setattr(settings, "PACER_RATE_PER_SECOND", 5)

        pacer = default_pacer()

        assert isinstance(pacer, TokenBucketPacer)
        assert pacer.rate == 5


class TestTokenBucketPacer:
    """Tests for TokenBucketPacer."""

    def test_burst_up_to_rate_without_sleeping(self):
        clock = FakeClock()
        pacer = TokenBucketPacer(rate=3, per_seconds=1.0, clock=clock, sleep=clock.sleep)

        for _ in range(3):
            pacer.pace()

        assert clock.sleeps == []

    def test_blocks_once_bucket_is_empty(self):
        clock = FakeClock()
        pacer = TokenBucketPacer(rate=2, per_seconds=1.0, clock=clock, sleep=clock.sleep)

        for _ in range(3):
            pacer.pace()

        assert clock.sleeps == [pytest.approx(0.5)]

    def test_never_exceeds_rate_over_time(self):
        clock = FakeClock()
        pacer = TokenBucketPacer(rate=10, per_seconds=1.0, clock=clock, sleep=clock.sleep)

        for _ in range(30):
            pacer.pace()

        # 10 free in the initial burst, then one token every 0.1s
        assert clock.now == pytest.approx(2.0)

    def test_invalid_rate_rejected(self):
        with pytest.raises(ValueError):
            TokenBucketPacer(rate=0)


def test_noop_pacer_does_nothing():
    assert NoopPacer().pace() is None
