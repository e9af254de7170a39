"""Unit tests for the shared-state circuit breaker."""

from __future__ import annotations

from src.portal.filemaker.circuit import (
    CIRCUIT_KEY,
    CIRCUIT_OPEN_DURATION_SECONDS,
    FAILURE_THRESHOLD,
    CircuitBreaker,
)


class TestCircuitBreaker:
    async def test_closed_when_no_counter(self, state_store):
        assert await CircuitBreaker(state_store).is_open() is False

    async def test_opens_after_three_failures(self, state_store):
        breaker = CircuitBreaker(state_store)

        for _ in range(FAILURE_THRESHOLD - 1):
            await breaker.record_failure()
            assert await breaker.is_open() is False

        await breaker.record_failure()
        assert await breaker.is_open() is True

    async def test_closes_after_cooldown(self, state_store):
        breaker = CircuitBreaker(state_store)
        for _ in range(FAILURE_THRESHOLD):
            await breaker.record_failure()

        state_store.advance(CIRCUIT_OPEN_DURATION_SECONDS)

        assert await breaker.is_open() is False
        assert await state_store.get(CIRCUIT_KEY) is None

    async def test_success_resets_immediately(self, state_store):
        breaker = CircuitBreaker(state_store)
        for _ in range(FAILURE_THRESHOLD):
            await breaker.record_failure()

        await breaker.record_success()

        assert await breaker.is_open() is False
        assert await state_store.get(CIRCUIT_KEY) is None

    async def test_ttl_set_only_on_first_failure(self, state_store):
        breaker = CircuitBreaker(state_store)

        await breaker.record_failure()
        state_store.advance(100)
        await breaker.record_failure()

        # The window is anchored at the first failure, not extended by later ones
        assert state_store.ttl(CIRCUIT_KEY) == CIRCUIT_OPEN_DURATION_SECONDS - 100

    async def test_fails_open_when_store_unreachable(self, state_store):
        breaker = CircuitBreaker(state_store)
        for _ in range(FAILURE_THRESHOLD):
            await breaker.record_failure()

        state_store.fail = True

        assert await breaker.is_open() is False

    async def test_record_calls_tolerate_store_outage(self, state_store):
        breaker = CircuitBreaker(state_store)
        state_store.fail = True

        await breaker.record_failure()
        await breaker.record_success()

    async def test_shared_across_instances(self, state_store):
        # Two process instances see one counter
        first, second = CircuitBreaker(state_store), CircuitBreaker(state_store)

        await first.record_failure()
        await second.record_failure()
        await first.record_failure()

        assert await second.is_open() is True
