"""Retry and backoff policies.

Two layers live here:

* ``call_with_rate_limit_retry`` is the fixed exponential-backoff loop wrapped
  around every LLM call. It only reacts to rate limiting.
* ``RetryStrategy`` is the pluggable policy consumed by
  ``execute_with_retry_strategy``. The loop itself is policy-agnostic: the
  strategy returns a ``RetryDecision`` and the loop either waits or stops.
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, FrozenSet, Iterable, Optional, TypeVar

from orchestra.schemas.messages import AgentError
from orchestra.utils.errors import RateLimitError, is_rate_limit_error

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]

MAX_RATE_LIMIT_RETRIES = 5
BASE_BACKOFF_DELAY = 1.0
MAX_BACKOFF_DELAY = 60.0
MAX_JITTER_RATIO = 0.3


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = BASE_BACKOFF_DELAY,
    max_delay: float = MAX_BACKOFF_DELAY,
    rng: Callable[[], float] = random.random,
) -> float:
    """``base * 2**attempt`` plus up to 30% jitter, clipped to ``max_delay``."""

    exponential = base_delay * (2 ** attempt)
    jitter = rng() * MAX_JITTER_RATIO * exponential
    return min(exponential + jitter, max_delay)


async def call_with_rate_limit_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = MAX_RATE_LIMIT_RETRIES,
    base_delay: float = BASE_BACKOFF_DELAY,
    max_delay: float = MAX_BACKOFF_DELAY,
    sleep: Sleep = asyncio.sleep,
    label: str = "llm",
) -> T:
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not is_rate_limit_error(exc) or attempt >= max_retries:
                raise
            delay = calculate_backoff_delay(attempt, base_delay, max_delay)
            LOGGER.warning(
                "%s: rate limit hit, retrying in %.2fs (attempt %d/%d)",
                label,
                delay,
                attempt + 1,
                max_retries,
            )
            await sleep(delay)
            attempt += 1


@dataclass
class RetryContext:
    attempt: int
    error: AgentError
    first_error_at: datetime
    last_error_at: datetime
    task_id: str
    agent_type: str


@dataclass(frozen=True)
class RetryDecision:
    should_retry: bool
    delay: float = 0.0
    reason: str = ""


class RetryStrategy(ABC):
    name: str = "retry"

    @abstractmethod
    def evaluate(self, context: RetryContext) -> RetryDecision:
        """Decide whether the failed attempt described by ``context`` is retried."""

    @abstractmethod
    def get_max_attempts(self) -> int:
        """Upper bound on total attempts, first call included."""


class NoRetryStrategy(RetryStrategy):
    name = "no-retry"

    def evaluate(self, context: RetryContext) -> RetryDecision:
        return RetryDecision(should_retry=False, reason="retries disabled")

    def get_max_attempts(self) -> int:
        return 1


@dataclass
class ExponentialBackoffStrategy(RetryStrategy):
    """Retries recoverable errors (or the listed codes) with exponential delays.

    Codes in ``excluded_codes`` are never retried here. Rate limits are
    excluded by default; ``call_with_rate_limit_retry`` owns their retries.
    """

    max_attempts: int = 3
    base_delay: float = BASE_BACKOFF_DELAY
    max_delay: float = MAX_BACKOFF_DELAY
    retryable_codes: FrozenSet[str] = field(default_factory=frozenset)
    excluded_codes: FrozenSet[str] = frozenset({RateLimitError.code})
    rng: Callable[[], float] = random.random
    name: str = "exponential-backoff"

    def evaluate(self, context: RetryContext) -> RetryDecision:
        error = context.error
        if error.code in self.excluded_codes:
            return RetryDecision(False, 0.0, f"{error.code} is handled by its own backoff")
        retryable = error.recoverable or error.code in self.retryable_codes
        if not retryable:
            return RetryDecision(False, 0.0, f"{error.code} is not retryable")
        if context.attempt + 1 >= self.max_attempts:
            return RetryDecision(False, 0.0, "max attempts reached")
        delay = calculate_backoff_delay(context.attempt, self.base_delay, self.max_delay, self.rng)
        return RetryDecision(True, delay, f"{error.code} is transient")

    def get_max_attempts(self) -> int:
        return self.max_attempts


def create_agent_retry_strategy(
    max_attempts: int = 3,
    base_delay: float = BASE_BACKOFF_DELAY,
    max_delay: float = MAX_BACKOFF_DELAY,
    extra_codes: Iterable[str] = (),
) -> ExponentialBackoffStrategy:
    return ExponentialBackoffStrategy(
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=max_delay,
        retryable_codes=frozenset({"TIMEOUT", *extra_codes}),
    )


async def execute_with_retry_strategy(
    fn: Callable[[], Awaitable[T]],
    error_converter: Callable[[BaseException], AgentError],
    strategy: Optional[RetryStrategy],
    *,
    task_id: str = "unknown",
    agent_type: str = "unknown",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run ``fn`` under ``strategy``: attempt, evaluate, then wait or stop.

    Without a strategy ``fn`` runs once. When the strategy declines a retry, or
    ``max_attempts`` is used up, the original exception propagates unchanged.
    """

    if strategy is None:
        return await fn()

    max_attempts = max(1, strategy.get_max_attempts())
    attempt = 0
    first_error_at: Optional[datetime] = None
    while True:
        try:
            return await fn()
        except Exception as exc:
            now = datetime.now()
            first_error_at = first_error_at or now
            context = RetryContext(
                attempt=attempt,
                error=error_converter(exc),
                first_error_at=first_error_at,
                last_error_at=now,
                task_id=task_id,
                agent_type=agent_type,
            )
            decision = strategy.evaluate(context)
            if not decision.should_retry or attempt + 1 >= max_attempts:
                LOGGER.debug(
                    "%s: retry not attempted (%s), attempt %d",
                    agent_type,
                    decision.reason or "no reason",
                    attempt,
                )
                raise
            LOGGER.warning(
                "%s: retry %d/%d in %.2fs (%s): %s",
                agent_type,
                attempt + 1,
                max_attempts,
                decision.delay,
                decision.reason,
                context.error.message,
            )
            if decision.delay > 0:
                await sleep(decision.delay)
            attempt += 1
