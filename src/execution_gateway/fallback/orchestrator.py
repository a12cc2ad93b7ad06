"""
Fallback orchestrator.

Drives an ordered list of candidate operations (primary first, then
fallbacks), each under its own retry budget, around a short-TTL response
cache:

    1. Cache hit for the operation id -> return immediately
    2. Candidates in order through the RetryExecutor ("<operation_id>#<index>")
    3. First success is cached under the operation id and returned
    4. All candidates exhausted -> degraded placeholder (if enabled)
       or the last ClassifiedError

The Gateway uses the three steps separately (``cached``, ``run_chain``,
``degrade``) so the circuit breaker wraps only the chain itself and cache
hits count toward neither breaker failures nor successes.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog

from execution_gateway.cache.response_cache import ResponseCache
from execution_gateway.errors.exceptions import ClassifiedError, DeadlineExceeded
from execution_gateway.fallback.degraded import degraded_response, degraded_shape
from execution_gateway.models.policy_models import FallbackConfig, RetryPolicy
from execution_gateway.monitoring.metrics import degraded_responses_total, fallback_attempts_total
from execution_gateway.retry.executor import RetryExecutor

logger = structlog.get_logger(__name__)

Operation = Callable[[], Awaitable[Any]]

_MISSING = object()


@dataclass(frozen=True)
class ChainOutcome:
    """Successful chain result and the candidate that produced it (0 = primary)."""

    value: Any
    candidate_index: int


class FallbackOrchestrator:
    """
    Ordered fallback chain with caching and graceful degradation.

    Attributes:
        retry_executor: Executor wrapping every candidate
        cache: Response cache keyed by operation id
        config: Fallback/cache/degradation switches (hot-updatable)
    """

    def __init__(
        self,
        retry_executor: RetryExecutor,
        cache: ResponseCache,
        config: Optional[FallbackConfig] = None,
    ):
        self.retry_executor = retry_executor
        self.cache = cache
        self.config = config or FallbackConfig()

    async def execute_with_fallback(
        self,
        primary: Operation,
        fallbacks: Sequence[Operation] = (),
        operation_id: str = "operation",
        policy: Optional[RetryPolicy] = None,
        deadline: Optional[float] = None,
    ) -> Any:
        """
        Execute the chain end to end.

        Args:
            primary: Preferred operation
            fallbacks: Alternatives tried in order after the primary
            operation_id: Cache key and log identity
            policy: Retry policy override applied to every candidate
            deadline: Absolute deadline on the executor clock

        Returns:
            Cached value, first successful candidate's value, or a
            degraded placeholder

        Raises:
            ClassifiedError: Every candidate failed and degradation is disabled
            DeadlineExceeded: Deadline expired mid-chain
        """
        cached = self.cached(operation_id)
        if cached is not _MISSING:
            return cached

        try:
            outcome = await self.run_chain(primary, fallbacks, operation_id, policy=policy, deadline=deadline)
        except ClassifiedError as error:
            if self.config.degrade_gracefully:
                return self.degrade(operation_id, error)
            raise
        return outcome.value

    def cached(self, operation_id: str) -> Any:
        """Cached value for an operation id, or the module sentinel on a miss."""
        if not self.config.cache_responses:
            return _MISSING
        value = self.cache.get(operation_id, _MISSING)
        if value is not _MISSING:
            logger.info("Returning cached response", operation_id=operation_id)
        return value

    @staticmethod
    def is_miss(value: Any) -> bool:
        return value is _MISSING

    async def run_chain(
        self,
        primary: Operation,
        fallbacks: Sequence[Operation] = (),
        operation_id: str = "operation",
        policy: Optional[RetryPolicy] = None,
        deadline: Optional[float] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> ChainOutcome:
        """
        Try candidates in order; cache and return the first success.

        Raises:
            ClassifiedError: Last candidate's error once every candidate failed
            DeadlineExceeded: Deadline expired mid-chain; ``last_error`` is the
                most recent provider failure in the chain, None when no
                candidate was ever invoked
        """
        candidates = [primary, *fallbacks] if self.config.enable_fallback else [primary]
        last_error: Optional[ClassifiedError] = None

        for index, candidate in enumerate(candidates):
            position = "primary" if index == 0 else "fallback"
            logger.info(
                f"Attempting candidate {index + 1}/{len(candidates)}",
                operation_id=operation_id,
                candidate_index=index,
            )
            try:
                value = await self.retry_executor.execute_with_retry(
                    candidate,
                    policy=policy,
                    operation_id=f"{operation_id}#{index}",
                    deadline=deadline,
                    provider=provider,
                    model=model,
                )
            except DeadlineExceeded as exc:
                if exc.last_error is None and last_error is not None:
                    raise DeadlineExceeded(exc.operation_id, exc.attempts, last_error) from exc
                raise
            except ClassifiedError as error:
                last_error = error
                fallback_attempts_total.labels(position=position, outcome="failure").inc()
                logger.warning(
                    "Candidate exhausted",
                    operation_id=operation_id,
                    candidate_index=index,
                    error_kind=error.kind.value,
                    error_message=error.message,
                    remaining_candidates=len(candidates) - index - 1,
                )
                continue

            fallback_attempts_total.labels(position=position, outcome="success").inc()
            if self.config.cache_responses:
                self.cache.put(operation_id, value)
            return ChainOutcome(value=value, candidate_index=index)

        logger.error(
            "All candidates exhausted",
            operation_id=operation_id,
            candidates=len(candidates),
            final_error_kind=last_error.kind.value if last_error else "unknown",
        )
        if last_error is None:
            raise RuntimeError(f"Fallback chain for {operation_id} ran no candidates")
        raise last_error

    def degrade(self, operation_id: str, error: Optional[ClassifiedError]) -> Any:
        """Placeholder response for an exhausted chain."""
        shape = degraded_shape(operation_id)
        degraded_responses_total.labels(shape=shape).inc()
        logger.warning(
            "Returning degraded response",
            operation_id=operation_id,
            shape=shape,
            error_message=error.message if error else None,
        )
        return degraded_response(operation_id, error)
