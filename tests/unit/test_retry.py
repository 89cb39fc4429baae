"""Tests for retry/backoff: classification, wall-clock budget, run deadline."""

from __future__ import annotations

import logging

import pytest

from deployforge.core.retry import (
    Deadline,
    ErrorClass,
    RetryPolicy,
    classify_error,
    retry,
)
from deployforge.errors import (
    ConfigurationError,
    ContractReverted,
    RunTimeoutError,
    TerminalChainError,
    TransientNetworkError,
)
from deployforge.models.config import RetrySettings


class Flaky:
    """Raises the queued errors in order, then returns ``value``."""

    def __init__(self, errors: list[Exception], value: object = "ok") -> None:
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    def __call__(self) -> object:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class TestClassifyError:
    @pytest.mark.parametrize(
        "exc",
        [
            TransientNetworkError("node down"),
            TimeoutError(),
            ConnectionError("reset by peer"),
            ValueError("nonce too low"),
            RuntimeError("429 Too Many Requests"),
            RuntimeError("503 Service Unavailable"),
        ],
    )
    def test_transient(self, exc):
        assert classify_error(exc) is ErrorClass.TRANSIENT

    @pytest.mark.parametrize(
        "exc",
        [
            ContractReverted("Ownable: caller is not the owner"),
            TerminalChainError("insufficient funds"),
            ConfigurationError("bad alias"),
            ValueError("insufficient funds for gas * price + value"),
            RuntimeError("something nobody has seen before"),
        ],
    )
    def test_terminal(self, exc):
        assert classify_error(exc) is ErrorClass.TERMINAL

    def test_revert_wins_over_timeout_wording(self):
        exc = ValueError("execution reverted: timeout not reached")
        assert classify_error(exc) is ErrorClass.TERMINAL


class TestRetryPolicy:
    def test_success_first_try(self, policy: RetryPolicy, clock):
        action = Flaky([])
        assert policy.run(action) == "ok"
        assert action.calls == 1
        assert clock.sleeps == []

    def test_transient_then_success(self, policy: RetryPolicy, clock):
        action = Flaky([TransientNetworkError("a"), TransientNetworkError("b")])
        assert policy.run(action) == "ok"
        assert action.calls == 3
        assert clock.sleeps == [0.1, 0.2]

    def test_terminal_is_not_retried(self, policy: RetryPolicy, clock):
        action = Flaky([ContractReverted("nope")])
        with pytest.raises(ContractReverted):
            policy.run(action)
        assert action.calls == 1
        assert clock.sleeps == []

    def test_budget_exhaustion_reraises_last_error(
        self, policy: RetryPolicy, clock
    ):
        errors = [TransientNetworkError(f"attempt {i}") for i in range(50)]
        action = Flaky(errors)
        with pytest.raises(TransientNetworkError) as info:
            policy.run(action)
        assert action.calls > 1
        # Never sleeps past the 2s budget.
        assert sum(clock.sleeps) <= 2.0 + 1e-6
        assert str(info.value) == f"attempt {action.calls - 1}"

    def test_backoff_is_capped(self, policy: RetryPolicy):
        assert policy.backoff_ms(0) == 100
        assert policy.backoff_ms(2) == 400
        assert policy.backoff_ms(10) == 800

    def test_explicit_budget_overrides_settings(
        self, policy: RetryPolicy, clock
    ):
        action = Flaky([TransientNetworkError("x")] * 10)
        with pytest.raises(TransientNetworkError):
            policy.run(action, budget_ms=150)
        assert sum(clock.sleeps) <= 0.15 + 1e-6

    def test_budget_spent_up_to_float_noise_stops(self, policy: RetryPolicy, clock):
        action = Flaky([TransientNetworkError("x")] * 10)
        with pytest.raises(TransientNetworkError):
            policy.run(action, budget_ms=300)
        assert action.calls == 3
        assert clock.sleeps == pytest.approx([0.1, 0.2])

    def test_attempt_offset_shifts_schedule(self, policy: RetryPolicy, clock):
        action = Flaky([TransientNetworkError("x")])
        policy.run(action, attempt=2)
        assert clock.sleeps == [0.4]

    def test_logs_warning_per_retry(self, policy: RetryPolicy, caplog):
        action = Flaky([TransientNetworkError("flaky node")])
        with caplog.at_level(logging.WARNING, logger="deployforge.core.retry"):
            policy.run(action, description="query token")
        assert any("query token" in r.getMessage() for r in caplog.records)

    def test_functional_form(self, clock):
        policy = RetryPolicy(RetrySettings(base_delay_ms=10), sleep=clock.sleep, clock=clock)
        action = Flaky([TransientNetworkError("x")], value=42)
        assert retry(action, policy=policy) == 42


class TestDeadline:
    def test_unbounded(self):
        deadline = Deadline()
        assert deadline.remaining() is None
        assert not deadline.expired()
        assert deadline.bound(30.0) == 30.0

    def test_bound_clamps_to_remaining(self, clock):
        deadline = Deadline(5.0, clock=clock)
        clock.now += 3.0
        assert deadline.bound(30.0) == pytest.approx(2.0)

    def test_check_raises_once_expired(self, clock):
        deadline = Deadline(1.0, clock=clock)
        deadline.check()
        clock.now += 1.5
        with pytest.raises(RunTimeoutError, match="deploy token"):
            deadline.check("deploy token")

    def test_policy_stops_at_deadline(self, policy: RetryPolicy, clock):
        deadline = Deadline(0.25, clock=clock)
        action = Flaky([TransientNetworkError("x")] * 20)
        with pytest.raises(RunTimeoutError):
            policy.run(action, deadline=deadline)
        assert action.calls >= 2
