"""
Vitae - Circuit Breaker Unit Tests
==================================
"""

import asyncio

import pytest

from vitae.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
)


async def _fail(breaker: CircuitBreaker) -> None:
    with pytest.raises(RuntimeError):
        async with breaker:
            raise RuntimeError("service down")


class TestCircuitBreaker:

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker("extraction", failure_threshold=2, reset_timeout=60)

        await _fail(breaker)
        assert breaker.is_closed
        await _fail(breaker)
        assert breaker.is_open

        with pytest.raises(CircuitOpenError):
            async with breaker:
                pass

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        breaker = CircuitBreaker("extraction", failure_threshold=2)

        await _fail(breaker)
        async with breaker:
            pass
        await _fail(breaker)

        assert breaker.is_closed
        assert breaker.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_half_open_recovery(self):
        breaker = CircuitBreaker("extraction", failure_threshold=1, reset_timeout=0)
        await _fail(breaker)

        assert breaker.state == CircuitState.HALF_OPEN
        async with breaker:
            pass
        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker("extraction", failure_threshold=3, reset_timeout=60)
        for _ in range(3):
            await _fail(breaker)
        breaker._opened_at -= 60
        assert breaker.state == CircuitState.HALF_OPEN

        await _fail(breaker)
        assert breaker.is_open

    @pytest.mark.asyncio
    async def test_half_open_admits_one_trial_call(self):
        breaker = CircuitBreaker("extraction", failure_threshold=1, reset_timeout=0)
        await _fail(breaker)
        release = asyncio.Event()

        async def trial():
            async with breaker:
                await release.wait()

        task = asyncio.create_task(trial())
        await asyncio.sleep(0)

        with pytest.raises(CircuitOpenError):
            async with breaker:
                pass

        release.set()
        await task
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_cancellation_is_not_a_failure(self):
        breaker = CircuitBreaker("extraction", failure_threshold=1)

        with pytest.raises(asyncio.CancelledError):
            async with breaker:
                raise asyncio.CancelledError()

        assert breaker.is_closed
