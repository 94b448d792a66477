"""Tests for the circuit breaker state machine."""

import asyncio

import pytest

from routewatch.config.schema import CircuitBreakerConfig
from routewatch.errors.circuit_breaker import CircuitBreakerRegistry, CircuitBreakerState
from routewatch.errors.exceptions import CircuitOpenFailure


@pytest.fixture
def registry(clock):
    return CircuitBreakerRegistry(clock=clock)


def _trip(registry, component="feed", times=3):
    for _ in range(times):
        assert registry.allow(component)
        registry.record_failure(component)


class TestStateMachine:
    def test_unknown_component_starts_closed(self, registry):
        info = registry.state("new")
        assert info.state == CircuitBreakerState.CLOSED
        assert info.failure_count == 0

    def test_opens_after_threshold(self, registry, clock):
        _trip(registry)
        info = registry.state("feed")
        assert info.state == CircuitBreakerState.OPEN
        assert info.failure_count == 3
        assert info.next_attempt_time == clock.now + 30

    def test_rejects_while_open_without_side_effects(self, registry, clock):
        _trip(registry)
        before = registry.state("feed")
        clock.advance(29)
        assert registry.allow("feed") is False
        assert registry.state("feed") == before

    def test_half_open_trial_success_closes(self, registry, clock):
        _trip(registry)
        clock.advance(30)
        assert registry.allow("feed") is True
        assert registry.state("feed").state == CircuitBreakerState.HALF_OPEN
        registry.record_success("feed")
        info = registry.state("feed")
        assert info.state == CircuitBreakerState.CLOSED
        assert info.failure_count == 0
        assert info.consecutive_successes == 1

    def test_half_open_allows_only_one_trial(self, registry, clock):
        _trip(registry)
        clock.advance(30)
        assert registry.allow("feed") is True
        assert registry.allow("feed") is False

    def test_half_open_failure_reopens(self, registry, clock):
        _trip(registry)
        clock.advance(30)
        registry.allow("feed")
        registry.record_failure("feed")
        info = registry.state("feed")
        assert info.state == CircuitBreakerState.OPEN
        assert info.next_attempt_time == clock.now + 30

    def test_successes_forgive_isolated_failures(self, registry):
        registry.record_failure("feed")
        registry.record_failure("feed")
        for _ in range(3):
            registry.record_success("feed")
        assert registry.state("feed").failure_count == 0
        registry.record_failure("feed")
        assert registry.state("feed").state == CircuitBreakerState.CLOSED

    def test_success_ignored_while_open(self, registry, clock):
        _trip(registry)
        clock.advance(5)
        registry.record_success("feed")
        info = registry.state("feed")
        assert info.state == CircuitBreakerState.OPEN
        assert registry.allow("feed") is False

    def test_forced_failure_counts_while_open(self, registry):
        _trip(registry)
        registry.record_failure("feed")
        assert registry.state("feed").failure_count == 3
        registry.record_failure("feed", force=True)
        info = registry.state("feed")
        assert info.failure_count == 4
        assert info.state == CircuitBreakerState.OPEN

    def test_release_frees_the_trial(self, registry, clock):
        _trip(registry)
        clock.advance(30)
        assert registry.allow("feed") is True
        registry.release("feed")
        assert registry.state("feed").state == CircuitBreakerState.HALF_OPEN
        assert registry.allow("feed") is True

    def test_failure_resets_success_streak(self, registry):
        registry.record_success("feed")
        registry.record_success("feed")
        registry.record_failure("feed")
        assert registry.state("feed").consecutive_successes == 0

    def test_reset_forces_closed(self, registry):
        _trip(registry)
        registry.reset("feed")
        info = registry.state("feed")
        assert info.state == CircuitBreakerState.CLOSED
        assert info.failure_count == 0
        assert info.consecutive_successes == 0

    def test_custom_threshold(self, clock):
        registry = CircuitBreakerRegistry(
            CircuitBreakerConfig(failure_threshold=1, recovery_timeout=5), clock=clock
        )
        registry.record_failure("feed")
        assert registry.state("feed").state == CircuitBreakerState.OPEN
        clock.advance(5)
        assert registry.allow("feed")

    def test_snapshot(self, registry):
        _trip(registry, "b")
        registry.state("a")
        snapshot = registry.snapshot()
        assert list(snapshot) == ["a", "b"]
        assert snapshot["b"]["state"] == "open"


class TestCall:
    async def test_success_recorded(self, registry):
        async def ok():
            return 42

        assert await registry.call("feed", ok) == 42
        assert registry.state("feed").consecutive_successes == 1

    async def test_failure_recorded_and_reraised(self, registry):
        async def boom():
            raise ValueError("down")

        with pytest.raises(ValueError):
            await registry.call("feed", boom)
        assert registry.state("feed").failure_count == 1

    async def test_fourth_call_rejected_without_attempt(self, registry, clock):
        calls = []

        async def boom():
            calls.append(1)
            raise ValueError("down")

        for _ in range(3):
            with pytest.raises(ValueError):
                await registry.call("feed", boom)
        with pytest.raises(CircuitOpenFailure) as excinfo:
            await registry.call("feed", boom)
        assert len(calls) == 3
        assert excinfo.value.component == "feed"
        assert excinfo.value.next_attempt_time == clock.now + 30

    async def test_recovers_after_timeout(self, registry, clock):
        async def boom():
            raise ValueError("down")

        async def ok():
            return "up"

        for _ in range(3):
            with pytest.raises(ValueError):
                await registry.call("feed", boom)
        clock.advance(30)
        assert await registry.call("feed", ok) == "up"
        info = registry.state("feed")
        assert info.state == CircuitBreakerState.CLOSED
        assert info.failure_count == 0

    async def test_cancelled_trial_does_not_wedge_half_open(self, registry, clock):
        async def cancelled():
            raise asyncio.CancelledError

        async def ok():
            return "up"

        _trip(registry)
        clock.advance(30)
        with pytest.raises(asyncio.CancelledError):
            await registry.call("feed", cancelled)
        assert registry.state("feed").trial_in_flight is False
        clock.advance(3600)
        assert await registry.call("feed", ok) == "up"
        assert registry.state("feed").state == CircuitBreakerState.CLOSED

