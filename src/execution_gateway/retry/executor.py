"""
Retry executor with exponential backoff and jitter.

Invokes an opaque async operation under a RetryPolicy budget. Every failure
is classified; permanent failures and exhausted budgets propagate
immediately (no needless sleep), transient failures are retried after a
backoff delay.

Delay before retry ``n`` (attempt ``n`` just failed):
    min(max_delay, initial_delay * backoff_multiplier ** (n - 1))
With jitter enabled the delay is perturbed by a uniform factor in
[-25%, +25%]. A provider ``retry_after`` hint overrides the computed delay.

Usage:
    executor = RetryExecutor(RetryPolicy(max_attempts=4))
    result = await executor.execute_with_retry(call_provider, operation_id="caption#0")
"""

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from execution_gateway.errors.classifier import classify
from execution_gateway.errors.exceptions import ClassifiedError, DeadlineExceeded
from execution_gateway.models.policy_models import RetryPolicy
from execution_gateway.monitoring.metrics import attempts_total, retries_total

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Classifier = Callable[..., ClassifiedError]

JITTER_RATIO = 0.25


def delay_schedule(policy: RetryPolicy) -> list[float]:
    """
    Jitter-free delays for every attempt of a policy.

    Entry ``i`` is the delay after attempt ``i + 1`` fails. The last entry is
    informational: no sleep follows the final attempt.
    """
    return [
        min(policy.max_delay, policy.initial_delay * policy.backoff_multiplier ** (attempt - 1))
        for attempt in range(1, policy.max_attempts + 1)
    ]


class RetryExecutor:
    """
    Stateless retry loop around a single candidate operation.

    The executor keeps no per-call state, so one instance is safely shared
    by any number of concurrent callers. Backoff sleeps suspend only the
    calling task.

    Cancellation (asyncio.CancelledError) is never caught: it propagates as
    cancellation. An expired caller deadline raises DeadlineExceeded, which
    is distinct from a ClassifiedError provider failure.

    Attributes:
        policy: Default retry policy (callers may override per call)
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        classifier: Classifier = classify,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize retry executor.

        Args:
            policy: Default policy; RetryPolicy() when omitted
            classifier: Failure classifier (error, provider=, model=) -> ClassifiedError
            sleep: Async sleep used for backoff (injectable for tests)
            clock: Monotonic clock used for deadlines (seconds)
            rng: Random source for jitter
        """
        self.policy = policy or RetryPolicy()
        self._classify = classifier
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

    def compute_delay(
        self,
        attempt: int,
        policy: Optional[RetryPolicy] = None,
        retry_after: Optional[float] = None,
    ) -> float:
        """
        Delay to wait after ``attempt`` (1-indexed) failed.

        Args:
            attempt: Attempt number that just failed
            policy: Policy to use (defaults to the executor policy)
            retry_after: Provider hint that overrides the computed backoff

        Returns:
            Delay in seconds (never negative)
        """
        if retry_after is not None:
            return max(0.0, retry_after)

        policy = policy or self.policy
        delay = min(policy.max_delay, policy.initial_delay * policy.backoff_multiplier ** (attempt - 1))
        if policy.jitter_enabled:
            delay += delay * JITTER_RATIO * self._rng.uniform(-1.0, 1.0)
        return max(0.0, delay)

    async def execute_with_retry(
        self,
        operation: Operation[T],
        policy: Optional[RetryPolicy] = None,
        operation_id: str = "operation",
        deadline: Optional[float] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> T:
        """
        Execute an operation under a retry budget.

        Args:
            operation: Zero-argument coroutine function to invoke
            policy: Per-call policy override
            operation_id: Identity used in logs (one retry budget per id)
            deadline: Absolute deadline on the executor clock (None = no deadline)
            provider: Provider name attached to classified errors
            model: Model name attached to classified errors

        Returns:
            The operation's result

        Raises:
            ClassifiedError: Permanent failure, or retry budget exhausted
            DeadlineExceeded: Deadline expired before a retry could run
        """
        policy = policy or self.policy
        last_error: Optional[ClassifiedError] = None

        for attempt in range(1, policy.max_attempts + 1):
            if deadline is not None and self._clock() >= deadline:
                raise DeadlineExceeded(operation_id, attempt - 1, last_error)

            try:
                result = await self._run_attempt(operation, policy)
            except Exception as exc:
                error = self._classify(exc, provider=provider, model=model)
                last_error = error
                attempts_total.labels(outcome="failure", error_kind=error.kind.value).inc()

                logger.warning(
                    "Provider attempt failed",
                    operation_id=operation_id,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    error_kind=error.kind.value,
                    retryable=error.retryable,
                    error_message=error.message,
                )

                if not error.retryable or attempt >= policy.max_attempts:
                    if error is exc:
                        raise
                    raise error from exc

                delay = self.compute_delay(attempt, policy, error.retry_after)
                if deadline is not None and self._clock() + delay > deadline:
                    raise DeadlineExceeded(operation_id, attempt, error) from error

                retries_total.labels(error_kind=error.kind.value).inc()
                logger.info(
                    "Retrying after backoff",
                    operation_id=operation_id,
                    next_attempt=attempt + 1,
                    delay_seconds=round(delay, 3),
                    provider_hint=error.retry_after is not None,
                )
                await self._sleep(delay)
            else:
                attempts_total.labels(outcome="success", error_kind="none").inc()
                if attempt > 1:
                    logger.info(
                        "Operation succeeded after retry",
                        operation_id=operation_id,
                        attempts=attempt,
                    )
                return result

        # max_attempts >= 1, so the last iteration always returns or raises
        raise RuntimeError(f"Retry loop for {operation_id} exited without a result")

    async def _run_attempt(self, operation: Operation[T], policy: RetryPolicy) -> T:
        if policy.attempt_timeout is None:
            return await operation()
        return await asyncio.wait_for(operation(), timeout=policy.attempt_timeout)
