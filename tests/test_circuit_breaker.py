"""
Tests for circuit breaker functionality.

Tests cover:
1. State transitions (CLOSED -> OPEN -> HALF_OPEN -> CLOSED)
2. execute(): fail-fast, error pass-through, failure accounting
3. CircuitBreakerRegistry (get, defaults, get_all_states)
4. State change callbacks
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from app.core.circuit_breaker import (
    DEFAULT_BREAKERS,
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    build_default_registry,
)
from app.core.errors import CallTimeoutError, CircuitOpenError


def _expire_cooldown(cb: CircuitBreaker) -> None:
    cb._last_failure_time = datetime.now(timezone.utc) - timedelta(seconds=cb.recovery_timeout + 1)


class TestCircuitState:
    def test_circuit_states_exist(self):
        assert CircuitState.CLOSED.value == "closed"
        assert CircuitState.OPEN.value == "open"
        assert CircuitState.HALF_OPEN.value == "half_open"

    def test_state_count(self):
        assert len(CircuitState) == 3


class TestCircuitBreakerInitialization:
    def test_default_initialization(self):
        cb = CircuitBreaker(name="test")

        assert cb.name == "test"
        assert cb.failure_threshold == 5
        assert cb.recovery_timeout == 60.0
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0
        assert cb.last_failure_time is None


class TestStateTransitions:
    @pytest.mark.parametrize("threshold", [1, 3, 5])
    def test_closed_to_open_after_threshold(self, threshold):
        """T consecutive failures open a closed breaker."""
        cb = CircuitBreaker(name="test", failure_threshold=threshold)

        for _ in range(threshold - 1):
            cb.record_failure()
        assert cb.state == CircuitState.CLOSED

        cb.record_failure()
        assert cb.state == CircuitState.OPEN

    def test_open_rejects_before_recovery_timeout(self):
        cb = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=60.0)
        cb.record_failure()

        assert cb.allow_request() is False
        assert cb.state == CircuitState.OPEN

    def test_open_to_half_open_after_recovery_timeout(self):
        cb = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=60.0)
        cb.record_failure()
        _expire_cooldown(cb)

        assert cb.allow_request() is True
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_success_closes_and_resets(self):
        cb = CircuitBreaker(name="test", failure_threshold=2)
        cb.record_failure()
        cb.record_failure()
        _expire_cooldown(cb)
        cb.allow_request()

        cb.record_success()

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

    def test_half_open_failure_reopens_and_refreshes_timestamp(self):
        cb = CircuitBreaker(name="test", failure_threshold=1)
        cb.record_failure()
        _expire_cooldown(cb)
        stale = cb.last_failure_time
        cb.allow_request()

        cb.record_failure()

        assert cb.state == CircuitState.OPEN
        assert cb.last_failure_time > stale
        assert cb.allow_request() is False

    def test_half_open_admits_concurrent_trials(self):
        """No single-trial gate: every caller in HALF_OPEN is let through."""
        cb = CircuitBreaker(name="test", failure_threshold=1)
        cb.record_failure()
        _expire_cooldown(cb)

        assert all(cb.allow_request() for _ in range(5))
        assert cb.state == CircuitState.HALF_OPEN


class TestRecordSuccess:
    def test_success_while_closed_keeps_failure_count(self):
        """Only a half-open success clears accumulated failures."""
        cb = CircuitBreaker(name="test", failure_threshold=5)
        cb.record_failure()
        cb.record_failure()

        cb.record_success()

        assert cb.failure_count == 2
        assert cb.state == CircuitState.CLOSED

    def test_interleaved_successes_do_not_prevent_opening(self):
        cb = CircuitBreaker(name="test", failure_threshold=3)
        for _ in range(3):
            cb.record_failure()
            cb.record_success()

        assert cb.state == CircuitState.OPEN


class TestExecute:
    @pytest.mark.asyncio
    async def test_passes_result_through(self):
        cb = CircuitBreaker(name="test")
        operation = AsyncMock(return_value="ok")

        assert await cb.execute(operation) == "ok"
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reraises_error_unchanged(self):
        cb = CircuitBreaker(name="test")
        error = ValueError("boom")

        with pytest.raises(ValueError) as exc_info:
            await cb.execute(AsyncMock(side_effect=error))

        assert exc_info.value is error
        assert cb.failure_count == 1

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        cb = CircuitBreaker(name="test", failure_threshold=1)

        with pytest.raises(CallTimeoutError):
            await cb.execute(AsyncMock(side_effect=CallTimeoutError("test", 0.1)))

        assert cb.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_invoking(self):
        cb = CircuitBreaker(name="slack-api", failure_threshold=2)
        failing = AsyncMock(side_effect=RuntimeError("down"))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await cb.execute(failing)

        operation = AsyncMock(return_value="ok")
        with pytest.raises(CircuitOpenError) as exc_info:
            await cb.execute(operation)

        operation.assert_not_awaited()
        assert exc_info.value.label == "slack-api"
        assert exc_info.value.retry_after is not None

    @pytest.mark.asyncio
    async def test_trial_call_after_cooldown_recovers(self):
        cb = CircuitBreaker(name="test", failure_threshold=1)
        with pytest.raises(RuntimeError):
            await cb.execute(AsyncMock(side_effect=RuntimeError("down")))
        _expire_cooldown(cb)

        result = await cb.execute(AsyncMock(return_value="recovered"))

        assert result == "recovered"
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0


class TestStateChangeCallback:
    def test_callback_receives_transitions(self):
        callback = MagicMock()
        cb = CircuitBreaker(name="test", failure_threshold=1, on_state_change=callback)

        cb.record_failure()
        _expire_cooldown(cb)
        cb.allow_request()
        cb.record_success()

        assert [c.args for c in callback.call_args_list] == [
            ("test", "closed", "open"),
            ("test", "open", "half_open"),
            ("test", "half_open", "closed"),
        ]

    def test_callback_errors_are_contained(self):
        cb = CircuitBreaker(name="test", failure_threshold=1, on_state_change=MagicMock(side_effect=Exception("x")))

        cb.record_failure()

        assert cb.state == CircuitState.OPEN


class TestCircuitBreakerRegistry:
    def test_get_returns_same_instance(self):
        registry = CircuitBreakerRegistry()
        assert registry.get("slack-api") is registry.get("slack-api")

    def test_separate_registries_do_not_share_state(self):
        first, second = CircuitBreakerRegistry(), CircuitBreakerRegistry()
        first.get("slack-api").record_failure()
        assert second.get("slack-api").failure_count == 0

    def test_known_labels_use_defaults(self):
        registry = CircuitBreakerRegistry()
        for name, (threshold, recovery) in DEFAULT_BREAKERS.items():
            cb = registry.get(name)
            assert cb.failure_threshold == threshold
            assert cb.recovery_timeout == recovery

    def test_openai_is_stricter_than_slack(self):
        registry = CircuitBreakerRegistry()
        assert registry.get("openai-api").failure_threshold == 3
        assert registry.get("slack-api").recovery_timeout == 30.0

    def test_overrides_apply_on_first_get(self):
        registry = CircuitBreakerRegistry()
        cb = registry.get("custom", failure_threshold=2, recovery_timeout=5.0)
        assert (cb.failure_threshold, cb.recovery_timeout) == (2, 5.0)

    def test_get_all_states(self):
        registry = CircuitBreakerRegistry()
        registry.get("a", failure_threshold=1).record_failure()
        registry.get("b")

        assert registry.get_all_states() == {"a": "open", "b": "closed"}

    def test_build_default_registry_precreates_known_breakers(self):
        registry = build_default_registry()
        for name in DEFAULT_BREAKERS:
            assert name in registry
        assert registry.snapshot()["slack-api"]["state"] == "closed"
