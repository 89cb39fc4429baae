"""Retry / backoff for network-touching calls.

Errors are classified before any retry decision:

- transient (timeouts, connection drops, rate limits, nonce-too-low for a
  pending transaction, node unavailable) -> exponential backoff and retry;
- terminal (reverts, insufficient funds, malformed input, anything not
  recognised) -> propagate immediately.

The budget is elapsed wall-clock time, not attempt count: confirmation
latency varies too much for a fixed count to mean anything. When the budget
runs out the last transient error is re-raised as-is so the caller still
sees the real cause.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from deployforge.errors import (
    ConfigurationError,
    RunTimeoutError,
    TerminalChainError,
    TransientNetworkError,
)
from deployforge.models.config import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Remainders below this are float noise from clock arithmetic, not time left.
_MIN_DELAY_MS = 1.0


class ErrorClass(str, Enum):
    TRANSIENT = "transient"
    TERMINAL = "terminal"


# Checked in order; terminal markers win so "execution reverted: timeout"
# is never retried.
_TERMINAL_MARKERS: tuple[str, ...] = (
    "execution reverted",
    "revert",
    "insufficient funds",
    "invalid argument",
    "invalid params",
    "malformed",
)

_TRANSIENT_MARKERS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "bad gateway",
    "service unavailable",
    "gateway time",
    "nonce too low",
    "replacement transaction underpriced",
    "already known",
    "known transaction",
    "already imported",
    "temporarily unavailable",
    "connection reset",
    "connection refused",
    "header not found",
)


def classify_error(exc: BaseException) -> ErrorClass:
    """Decide whether *exc* is worth retrying."""
    if isinstance(exc, TransientNetworkError):
        return ErrorClass.TRANSIENT
    if isinstance(exc, (TerminalChainError, ConfigurationError, RunTimeoutError)):
        return ErrorClass.TERMINAL
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorClass.TRANSIENT

    message = str(exc).lower()
    if any(marker in message for marker in _TERMINAL_MARKERS):
        return ErrorClass.TERMINAL
    if any(marker in message for marker in _TRANSIENT_MARKERS):
        return ErrorClass.TRANSIENT
    return ErrorClass.TERMINAL


# ---------------------------------------------------------------------------
# Run-level deadline
# ---------------------------------------------------------------------------


class Deadline:
    """Overall run timeout, distinct from the per-call retry budget.

    Parameters
    ----------
    timeout_s:
        Seconds from construction until expiry. ``None`` never expires.
    """

    def __init__(
        self,
        timeout_s: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._expires_at = None if timeout_s is None else clock() + timeout_s

    def remaining(self) -> float | None:
        """Seconds left, ``None`` for an unbounded run."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining * 1000 < _MIN_DELAY_MS

    def check(self, what: str = "run") -> None:
        """Raise ``RunTimeoutError`` if the deadline has passed."""
        if self.expired():
            raise RunTimeoutError(f"Run deadline expired during {what}")

    def bound(self, timeout_s: float) -> float:
        """Clamp a per-call timeout to what is left of the run."""
        remaining = self.remaining()
        return timeout_s if remaining is None else min(timeout_s, remaining)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class RetryPolicy:
    """Wall-clock-bounded exponential backoff.

    Parameters
    ----------
    settings:
        Budget and delay schedule.
    sleep, clock:
        Injectable for tests.
    classifier:
        Maps an exception to ``ErrorClass``.
    """

    def __init__(
        self,
        settings: RetrySettings | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        classifier: Callable[[BaseException], ErrorClass] = classify_error,
    ) -> None:
        self.settings = settings or RetrySettings()
        self._sleep = sleep
        self._clock = clock
        self._classify = classifier

    def backoff_ms(self, attempt: int) -> float:
        """Delay before the retry that follows *attempt* (0-based)."""
        return min(
            self.settings.base_delay_ms * (2 ** attempt),
            self.settings.max_delay_ms,
        )

    def run(
        self,
        action: Callable[[], T],
        *,
        attempt: int = 0,
        budget_ms: int | None = None,
        deadline: Deadline | None = None,
        description: str = "network call",
    ) -> T:
        """Call *action* until it succeeds, fails terminally, or the budget ends."""
        budget = self.settings.budget_ms if budget_ms is None else budget_ms
        started = self._clock()

        while True:
            if deadline is not None:
                deadline.check(description)
            try:
                return action()
            except Exception as exc:
                if self._classify(exc) is ErrorClass.TERMINAL:
                    raise

                elapsed_ms = (self._clock() - started) * 1000
                remaining_ms = budget - elapsed_ms
                if remaining_ms < _MIN_DELAY_MS:
                    logger.error(
                        "Giving up on %s after %d attempt(s), %.0f ms: %s",
                        description,
                        attempt + 1,
                        elapsed_ms,
                        exc,
                    )
                    raise

                delay_ms = min(self.backoff_ms(attempt), remaining_ms)
                if deadline is not None:
                    delay_ms = deadline.bound(delay_ms / 1000) * 1000
                logger.warning(
                    "Retrying %s (attempt %d, %.0f ms elapsed, next in %.0f ms): %s",
                    description,
                    attempt + 1,
                    elapsed_ms,
                    delay_ms,
                    exc,
                )
                self._sleep(delay_ms / 1000)
                attempt += 1


def retry(
    action: Callable[[], T],
    attempt: int = 0,
    budget_ms: int | None = None,
    *,
    policy: RetryPolicy | None = None,
    deadline: Deadline | None = None,
    description: str = "network call",
) -> T:
    """Functional form of ``RetryPolicy.run`` with the default schedule."""
    return (policy or RetryPolicy()).run(
        action,
        attempt=attempt,
        budget_ms=budget_ms,
        deadline=deadline,
        description=description,
    )
