import asyncio

import pytest

from facility_intake.core.types import ProviderConfig
from facility_intake.router import CircuitBreaker, CircuitState, ProviderGate, RateLimiter

pytestmark = pytest.mark.unit


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_requests_within_limit_do_not_wait(self, fake_clock):
        limiter = RateLimiter(3, clock=fake_clock, sleep=fake_clock.sleep)

        waits = [await limiter.acquire() for _ in range(3)]

        assert waits == [0.0, 0.0, 0.0]
        assert fake_clock.sleeps == []
        assert limiter.recent_requests == 3

    @pytest.mark.asyncio
    async def test_excess_requests_are_delayed_never_rejected(self, fake_clock):
        limiter = RateLimiter(3, clock=fake_clock, sleep=fake_clock.sleep)
        admitted = []

        for _ in range(10):
            await limiter.acquire()
            admitted.append(fake_clock.now)

        assert len(admitted) == 10
        # No sliding window of 60s ever holds more than the ceiling.
        for start in admitted:
            in_window = [t for t in admitted if start <= t < start + 60.0]
            assert len(in_window) <= 3

    @pytest.mark.asyncio
    async def test_wait_is_until_oldest_leaves_the_window(self, fake_clock):
        limiter = RateLimiter(2, clock=fake_clock, sleep=fake_clock.sleep)
        await limiter.acquire()
        fake_clock.now += 20.0
        await limiter.acquire()

        waited = await limiter.acquire()

        assert waited == pytest.approx(40.0)

    @pytest.mark.asyncio
    async def test_concurrent_waiters_are_admitted_in_order(self, fake_clock):
        limiter = RateLimiter(1, clock=fake_clock, sleep=fake_clock.sleep)
        order: list[int] = []

        async def take(n: int) -> None:
            await limiter.acquire()
            order.append(n)

        await asyncio.gather(*(take(n) for n in range(4)))

        assert order == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_recent_requests_evicts_old_entries(self, fake_clock):
        limiter = RateLimiter(5, clock=fake_clock, sleep=fake_clock.sleep)
        await limiter.acquire()
        fake_clock.now += 61.0

        assert limiter.recent_requests == 0

    def test_ceiling_must_be_positive(self):
        with pytest.raises(ValueError):
            RateLimiter(0)


@pytest.mark.asyncio
async def test_gate_tracks_in_flight(fake_clock):
    gate = ProviderGate(
        ProviderConfig(default_model="m", max_concurrent=2, rate_limit_per_minute=10),
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )

    async with gate.slot():
        assert gate.in_flight == 1
        async with gate.slot():
            assert gate.in_flight == 2
    assert gate.in_flight == 0
    assert gate.limiter.recent_requests == 2


class TestCircuitBreaker:
    def _breaker(self, clock):
        return CircuitBreaker(
            "anthropic", failure_threshold=2, window_seconds=60.0, open_seconds=30.0, clock=clock
        )

    def test_opens_after_threshold(self, fake_clock):
        breaker = self._breaker(fake_clock)

        breaker.record_failure()
        assert breaker.allow()
        breaker.record_failure()

        assert breaker.state is CircuitState.OPEN
        assert not breaker.allow()

    def test_failures_outside_window_do_not_count(self, fake_clock):
        breaker = self._breaker(fake_clock)

        breaker.record_failure()
        fake_clock.now += 61.0
        breaker.record_failure()

        assert breaker.state is CircuitState.CLOSED

    def test_half_open_admits_one_probe(self, fake_clock):
        breaker = self._breaker(fake_clock)
        breaker.record_failure()
        breaker.record_failure()
        fake_clock.now += 30.0

        assert breaker.allow()
        assert breaker.state is CircuitState.HALF_OPEN
        assert not breaker.allow()

    def test_probe_success_closes(self, fake_clock):
        breaker = self._breaker(fake_clock)
        breaker.record_failure()
        breaker.record_failure()
        fake_clock.now += 30.0
        breaker.allow()

        breaker.record_success()

        assert breaker.state is CircuitState.CLOSED
        assert breaker.allow()

    def test_probe_failure_reopens(self, fake_clock):
        breaker = self._breaker(fake_clock)
        breaker.record_failure()
        breaker.record_failure()
        fake_clock.now += 30.0
        breaker.allow()

        breaker.record_failure()

        assert breaker.state is CircuitState.OPEN
        assert not breaker.allow()

    def test_released_half_open_slot_admits_the_next_call(self, fake_clock):
        breaker = self._breaker(fake_clock)
        breaker.record_failure()
        breaker.record_failure()
        fake_clock.now += 30.0
        assert breaker.allow()

        breaker.release_half_open_slot()

        assert breaker.state is CircuitState.HALF_OPEN
        assert breaker.allow()
        assert not breaker.allow()

    def test_release_does_not_reopen_an_open_circuit(self, fake_clock):
        breaker = self._breaker(fake_clock)
        breaker.record_failure()
        breaker.record_failure()

        breaker.release_half_open_slot()

        assert breaker.state is CircuitState.OPEN
        assert not breaker.allow()
