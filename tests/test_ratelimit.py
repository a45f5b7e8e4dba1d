"""
tests/test_ratelimit.py -- Outbound rate limiter (dual sliding window).

Time is simulated: the injected sleep advances the injected clock, so the
tests run instantly and deterministically. Each test drives the limiter
inside its own asyncio.run() call.

Covers:
  - Calls beyond the per-second ceiling are delayed by the rest of the window
  - No call is ever dropped or raises
  - No 1-second window ever sees more than per_second admissions
  - The per-minute ceiling holds independently of the per-second one
"""

from __future__ import annotations

import asyncio

import pytest

from core.ratelimit import OutboundRateLimiter

START = 1000.0
EPSILON = 1e-6


class FakeTime:
    def __init__(self) -> None:
        self.now = START
        self.sleeps = 0

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps += 1
        self.now += seconds
        await asyncio.sleep(0)


def _limiter(fake: FakeTime, per_second: int = 3, per_minute: int = 60) -> OutboundRateLimiter:
    return OutboundRateLimiter(per_second=per_second, per_minute=per_minute, clock=fake.clock, sleep=fake.sleep)


async def _admit_all(limiter: OutboundRateLimiter, fake: FakeTime, n: int) -> list[float]:
    admitted: list[float] = []

    async def one() -> None:
        await limiter.acquire()
        admitted.append(fake.now)

    await asyncio.gather(*(one() for _ in range(n)))
    return sorted(admitted)


class TestPerSecondWindow:
    def test_excess_calls_are_delayed_not_dropped(self) -> None:
        fake = FakeTime()
        times = asyncio.run(_admit_all(_limiter(fake), fake, 5))

        assert len(times) == 5
        assert times[:3] == [START, START, START]
        assert all(t - START >= 1.0 - EPSILON for t in times[3:])

    def test_under_the_ceiling_nothing_waits(self) -> None:
        fake = FakeTime()
        times = asyncio.run(_admit_all(_limiter(fake), fake, 3))
        assert times == [START] * 3
        assert fake.sleeps == 0

    def test_no_window_exceeds_ceiling(self) -> None:
        fake = FakeTime()
        times = asyncio.run(_admit_all(_limiter(fake, per_second=3), fake, 20))

        assert len(times) == 20
        for t in times:
            in_window = [u for u in times if t - 1.0 + EPSILON < u <= t]
            assert len(in_window) <= 3

    def test_sequential_callers_share_one_window(self) -> None:
        fake = FakeTime()
        limiter = _limiter(fake, per_second=2)

        async def run() -> list[float]:
            stamps = []
            for _ in range(4):
                await limiter.acquire()
                stamps.append(fake.now)
            return stamps

        stamps = asyncio.run(run())
        assert stamps[:2] == [START, START]
        assert stamps[2] - START >= 1.0 - EPSILON
        assert stamps[3] - START >= 1.0 - EPSILON


class TestPerMinuteWindow:
    def test_minute_ceiling_applies(self) -> None:
        fake = FakeTime()
        times = asyncio.run(_admit_all(_limiter(fake, per_second=10, per_minute=5), fake, 6))

        assert times[:5] == [START] * 5
        assert times[5] - START >= 60.0 - EPSILON


class TestConfiguration:
    @pytest.mark.parametrize("per_second,per_minute", [(0, 60), (3, 0), (-1, -1)])
    def test_non_positive_limits_are_rejected(self, per_second: int, per_minute: int) -> None:
        with pytest.raises(ValueError):
            OutboundRateLimiter(per_second=per_second, per_minute=per_minute)
