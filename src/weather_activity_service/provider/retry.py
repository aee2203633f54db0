"""Bounded retry for provider rate-limit (HTTP 429) responses.

The policy is a small explicit state machine:

    ATTEMPTING -> SUCCEEDED            any non-429 response
    ATTEMPTING -> BACKOFF              429 with attempts and deadline left
    BACKOFF    -> RETRYING -> ATTEMPTING
    ATTEMPTING -> FAILED               429 on the last attempt, 429 whose
                                       backoff would pass the deadline, or
                                       any request error

Only 429 is retried. Transport errors and timeouts fail on the first
occurrence. Sleeping and the clock are injected so the bound can be tested
without real timers.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

import httpx

RATE_LIMIT_STATUS = 429

# Failures raised while building or sending a request. A query httpx cannot
# encode (a lone surrogate from argv) surfaces as UnicodeError or InvalidURL.
REQUEST_ERRORS: tuple[type[Exception], ...] = (
    httpx.HTTPError,
    httpx.InvalidURL,
    UnicodeError,
)


class RetryState(StrEnum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RetryOutcome:
    """Result of running a request under the retry policy."""

    state: RetryState
    attempts: int
    response: httpx.Response | None = None
    error: Exception | None = None
    deadline_exceeded: bool = False
    history: list[RetryState] = field(default_factory=list)


class RateLimitRetry:
    """Run a request callable, retrying only while the provider answers 429."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        delay_seconds: float = 1.0,
        deadline_seconds: float | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds
        self.deadline_seconds = deadline_seconds
        self._sleep = sleep_fn
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    def run(self, send: Callable[[], httpx.Response]) -> RetryOutcome:
        started = self._clock()
        outcome = RetryOutcome(state=RetryState.ATTEMPTING, attempts=0)
        outcome.history.append(RetryState.ATTEMPTING)

        while True:
            outcome.attempts += 1
            try:
                response = send()
            except REQUEST_ERRORS as exc:
                outcome.error = exc
                return self._transition(outcome, RetryState.FAILED)

            outcome.response = response
            if response.status_code != RATE_LIMIT_STATUS:
                return self._transition(outcome, RetryState.SUCCEEDED)

            if outcome.attempts >= self.max_attempts:
                self._logger.warning(
                    "Provider rate limit persisted after %d attempts", outcome.attempts
                )
                return self._transition(outcome, RetryState.FAILED)

            if self._would_pass_deadline(started):
                outcome.deadline_exceeded = True
                self._logger.warning(
                    "Provider rate limit retry abandoned: deadline of %.1fs reached",
                    self.deadline_seconds,
                )
                return self._transition(outcome, RetryState.FAILED)

            self._transition(outcome, RetryState.BACKOFF)
            self._logger.warning(
                "Provider rate limited (HTTP 429); retrying attempt=%d/%d delay_s=%.2f",
                outcome.attempts + 1,
                self.max_attempts,
                self.delay_seconds,
            )
            if self.delay_seconds > 0:
                self._sleep(self.delay_seconds)
            self._transition(outcome, RetryState.RETRYING)
            self._transition(outcome, RetryState.ATTEMPTING)

    def _would_pass_deadline(self, started: float) -> bool:
        if self.deadline_seconds is None:
            return False
        elapsed = self._clock() - started
        return elapsed + self.delay_seconds > self.deadline_seconds

    @staticmethod
    def _transition(outcome: RetryOutcome, state: RetryState) -> RetryOutcome:
        outcome.state = state
        outcome.history.append(state)
        return outcome
