"""
Pacing for sequential provider calls.

Sweeps call ``pacer.pace()`` once after every record, whatever the outcome,
so the provider never sees more than one call per delay window from a
single invocation.

Usage:
    pacer = FixedDelayPacer(delay_seconds=0.1)
    for record in batch:
        try:
            process(record)
        finally:
            pacer.pace()
"""
import time
from typing import Callable, Protocol

from app.core.config import settings


class Pacer(Protocol):
    def pace(self) -> None:
        ...


class FixedDelayPacer:
    """Sleeps a fixed delay on every call."""

    def __init__(self, delay_seconds: float, sleep: Callable[[float], None] = time.sleep):
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    def pace(self) -> None:
        if self.delay_seconds > 0:
            self._sleep(self.delay_seconds)


class TokenBucketPacer:
    """
    Token bucket limiter: at most ``rate`` calls per ``per_seconds``.

    Bursts up to ``rate`` calls are allowed when the bucket is full, after
    which each call blocks until a token has refilled.
    """

    def __init__(
        self,
        rate: int,
        per_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if rate <= 0 or per_seconds <= 0:
            raise ValueError("rate and per_seconds must be positive")
        self.rate = rate
        self.per_seconds = per_seconds
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(rate)
        self._last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self._tokens = min(float(self.rate), self._tokens + elapsed * self.rate / self.per_seconds)
        self._last_refill = now

    def pace(self) -> None:
        self._refill()
        if self._tokens < 1:
            wait = (1 - self._tokens) * self.per_seconds / self.rate
            self._sleep(wait)
            self._refill()
        self._tokens -= 1


class NoopPacer:
    def pace(self) -> None:
        return None


def default_pacer() -> Pacer:
    """Pacer selected by PACER: a token bucket at PACER_RATE_PER_SECOND, else a fixed delay."""
    if settings.PACER == "token_bucket":
        return TokenBucketPacer(rate=settings.PACER_RATE_PER_SECOND, per_seconds=1.0)
    return FixedDelayPacer(settings.RATE_LIMIT_DELAY_MS / 1000)
