"""
Execution Gateway.

Single entry point that wraps every call to an unreliable external provider:

    1. Quota pre-check: reserve budget (denied -> no attempt, no cost)
    2. Response cache: hit -> return immediately, hold released
    3. Circuit breaker (per service id) around the fallback chain
    4. Fallback chain: primary then fallbacks, each under its own retry budget
    5. Usage record committed for every attempted call, success or failure
    6. Exhausted chain -> degraded placeholder or classified failure

Expected outcomes are returned as GatewayResult. Only cancellation and an
expired caller deadline propagate as exceptions.
"""

import asyncio
import random
import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

import structlog

from execution_gateway.cache.response_cache import ResponseCache
from execution_gateway.circuit.breaker import CircuitBreaker, CircuitStatus
from execution_gateway.config import Settings
from execution_gateway.errors.classifier import classify
from execution_gateway.errors.exceptions import CircuitOpenError, ClassifiedError, DeadlineExceeded
from execution_gateway.fallback.orchestrator import FallbackOrchestrator
from execution_gateway.models.enums import ResultStatus
from execution_gateway.models.policy_models import (
    CircuitBreakerConfig,
    FallbackConfig,
    GatewayConfig,
    ModelPricing,
    RetryPolicy,
    UsageLimits,
)
from execution_gateway.models.result_models import GatewayResult
from execution_gateway.models.usage_models import Reservation, TokenUsage, UsageRecord, utc_now
from execution_gateway.monitoring.metrics import operation_latency_seconds
from execution_gateway.persistence.flusher import DEFAULT_FLUSH_INTERVAL, UsageFlusher
from execution_gateway.persistence.store import UsageStore
from execution_gateway.retry.executor import RetryExecutor
from execution_gateway.usage.alerts import AlertSink, UsageAlertManager
from execution_gateway.usage.pricing import PricingTable
from execution_gateway.usage.tracker import UsageTracker

logger = structlog.get_logger(__name__)

Operation = Callable[[], Awaitable[Any]]
UsageExtractor = Callable[[Any], Optional[TokenUsage]]


class Gateway:
    """
    Resilient execution gateway.

    One instance owns the shared resilience state (circuits, cache, usage
    ledger) for a process and is safe to use from any number of concurrent
    tasks.

    Attributes:
        config: Current validated configuration
        tracker: Usage ledger and quota enforcement
        breaker: Per-service circuit breaker
        cache: Response cache
        retry_executor: Retry loop shared by all candidates
        orchestrator: Fallback chain driver
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        *,
        store: Optional[UsageStore] = None,
        alert_sinks: Iterable[AlertSink] = (),
        classifier: Callable[..., ClassifiedError] = classify,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
    ):
        """
        Initialize gateway.

        Args:
            config: Validated configuration (defaults when omitted)
            store: Usage ledger persistence (None = in-memory only)
            alert_sinks: Callables receiving usage threshold alerts
            classifier: Failure classifier
            sleep: Async sleep used for backoff (injectable for tests)
            clock: Monotonic clock for deadlines, breaker and cache (seconds)
            wall_clock: UTC clock for usage records and quota periods
            rng: Random source for backoff jitter
            flush_interval: Seconds between ledger flushes to the store
        """
        self.config = config or GatewayConfig()
        self._classify = classifier
        self._clock = clock
        self._wall_clock = wall_clock

        self.tracker = UsageTracker(
            limits=self.config.limits,
            pricing=PricingTable(self.config.pricing, default_rate=self.config.default_token_rate),
            clock=wall_clock,
            alert_manager=UsageAlertManager(sinks=alert_sinks),
        )
        self.breaker = CircuitBreaker.from_config(self.config.circuit, clock=clock)
        self.cache = ResponseCache(
            ttl=self.config.fallback.cache_ttl,
            max_entries=self.config.fallback.cache_max_entries,
            clock=clock,
        )
        self.retry_executor = RetryExecutor(
            policy=self.config.retry,
            classifier=classifier,
            sleep=sleep,
            clock=clock,
            rng=rng,
        )
        self.orchestrator = FallbackOrchestrator(self.retry_executor, self.cache, self.config.fallback)

        self.store = store
        self.flusher = UsageFlusher(self.tracker, store, flush_interval) if store is not None else None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "Gateway":
        """
        Build a gateway from environment settings.

        Raises:
            ConfigurationError: Settings do not form a valid configuration
        """
        if "store" not in kwargs:
            kwargs["store"] = settings.build_usage_store()
        kwargs.setdefault("flush_interval", settings.USAGE_FLUSH_INTERVAL)
        return cls(settings.to_gateway_config(), **kwargs)

    # === Lifecycle ===

    async def start(self) -> None:
        """Load persisted usage history and start background flushing."""
        if self.flusher is None:
            return
        history = await self.store.load()
        self.tracker.load_history(history)
        self.flusher.mark_clean()
        self.flusher.start()

    async def close(self) -> None:
        """Stop flushing, write a final ledger snapshot and close the store."""
        if self.store is None:
            return
        try:
            await self.flusher.stop()
        finally:
            await self.store.close()

    async def __aenter__(self) -> "Gateway":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # === Configuration ===

    def update_config(
        self,
        retry: Optional[RetryPolicy] = None,
        fallback: Optional[FallbackConfig] = None,
        circuit: Optional[CircuitBreakerConfig] = None,
        limits: Optional[UsageLimits] = None,
        pricing: Optional[Dict[str, ModelPricing]] = None,
    ) -> GatewayConfig:
        """
        Hot-update parts of the configuration.

        Calls already in flight keep the policy they started with; existing
        circuit states and cache entries are kept.

        Returns:
            The new configuration
        """
        update: Dict[str, Any] = {}
        if retry is not None:
            update["retry"] = retry
            self.retry_executor.policy = retry
        if fallback is not None:
            update["fallback"] = fallback
            self.orchestrator.config = fallback
            self.cache.ttl = fallback.cache_ttl
            self.cache.max_entries = fallback.cache_max_entries
        if circuit is not None:
            update["circuit"] = circuit
            self.breaker.configure(circuit)
        if limits is not None:
            update["limits"] = limits
            self.tracker.set_limits(limits)
        if pricing is not None:
            update["pricing"] = {**self.config.pricing, **pricing}
            self.tracker.set_pricing(pricing)

        self.config = self.config.model_copy(update=update)
        logger.info("Gateway configuration updated", sections=sorted(update))
        return self.config

    def reset_circuit(self, service_id: Optional[str] = None) -> None:
        self.breaker.reset(service_id)

    def circuit_status(self, service_id: Optional[str] = None) -> CircuitStatus | List[CircuitStatus]:
        if service_id is None:
            return self.breaker.snapshot()
        return self.breaker.get_status(service_id)

    def clear_cache(self) -> None:
        self.cache.clear()

    # === Execution ===

    async def execute(
        self,
        operation_id: str,
        provider: str,
        primary: Operation,
        fallbacks: Sequence[Operation] = (),
        estimated_tokens: int = 0,
        model: Optional[str] = None,
        *,
        service_id: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        user_id: Optional[str] = None,
        org_id: Optional[str] = None,
        deadline: Optional[float] = None,
        usage_extractor: Optional[UsageExtractor] = None,
    ) -> GatewayResult:
        """
        Execute a provider call with full protection.

        Args:
            operation_id: Logical operation identity (cache key, degraded shape)
            provider: Provider name (e.g. "openai")
            primary: Zero-argument coroutine function for the preferred call
            fallbacks: Alternatives tried in order after the primary
            estimated_tokens: Tokens expected for the pre-flight quota check
            model: Model used for pricing (defaults to the provider name)
            service_id: Circuit key (defaults to "provider:model" or provider)
            retry_policy: Per-call retry policy override
            user_id: Attributed user for usage records
            org_id: Attributed organization for usage records
            deadline: Absolute deadline on the gateway's monotonic clock
            usage_extractor: Maps the result to actual TokenUsage; when absent
                or returning None, ``estimated_tokens`` are recorded

        Returns:
            GatewayResult with status success, degraded, denied or failed

        Raises:
            DeadlineExceeded: Deadline expired before the chain finished
            asyncio.CancelledError: Caller cancelled the call
        """
        service_id = service_id or (f"{provider}:{model}" if model else provider)
        with structlog.contextvars.bound_contextvars(
            operation_id=operation_id, provider=provider, service_id=service_id
        ):
            return await self._execute(
                operation_id,
                provider,
                primary,
                fallbacks,
                estimated_tokens,
                model,
                service_id,
                retry_policy,
                user_id,
                org_id,
                deadline,
                usage_extractor,
            )

    async def _execute(
        self,
        operation_id: str,
        provider: str,
        primary: Operation,
        fallbacks: Sequence[Operation],
        estimated_tokens: int,
        model: Optional[str],
        service_id: str,
        retry_policy: Optional[RetryPolicy],
        user_id: Optional[str],
        org_id: Optional[str],
        deadline: Optional[float],
        usage_extractor: Optional[UsageExtractor],
    ) -> GatewayResult:
        pricing_model = model or provider
        started = self._clock()

        decision = self.tracker.reserve(estimated_tokens, pricing_model)
        if not decision.allowed:
            logger.warning("Execution denied by usage limits", reason=decision.reason, suggestion=decision.suggestion)
            return self._finish(
                GatewayResult(
                    status=ResultStatus.DENIED,
                    operation_id=operation_id,
                    service_id=service_id,
                    denial=decision,
                ),
                started,
            )
        reservation = decision.reservation

        cached = self.orchestrator.cached(operation_id)
        if not self.orchestrator.is_miss(cached):
            self.tracker.release(reservation)
            return self._finish(
                GatewayResult(
                    status=ResultStatus.SUCCESS,
                    operation_id=operation_id,
                    service_id=service_id,
                    value=cached,
                    from_cache=True,
                ),
                started,
            )

        policy = self._effective_policy(retry_policy)

        try:
            outcome = await self.breaker.execute(
                service_id,
                lambda: self.orchestrator.run_chain(
                    primary,
                    fallbacks,
                    operation_id,
                    policy=policy,
                    deadline=deadline,
                    provider=provider,
                    model=model,
                ),
            )
        except CircuitOpenError as exc:
            # Rejected before any attempt: nothing to record
            self.tracker.release(reservation)
            logger.warning("Circuit open, call not attempted", retry_in=round(exc.retry_in, 3))
            return self._finish(
                self._failure_result(operation_id, service_id, self._classify(exc, provider=provider, model=model)),
                started,
            )
        except ClassifiedError as error:
            self._commit_failure(reservation, provider, pricing_model, operation_id, started, error.message, user_id, org_id)
            return self._finish(self._failure_result(operation_id, service_id, error), started)
        except DeadlineExceeded as exc:
            if exc.last_error is None:
                # Expired before any provider was invoked
                self.tracker.release(reservation)
            else:
                self._commit_failure(
                    reservation, provider, pricing_model, operation_id, started, exc.message, user_id, org_id
                )
            logger.warning("Deadline exceeded", attempts=exc.attempts, attempted=exc.last_error is not None)
            raise
        except asyncio.CancelledError:
            self._commit_failure(reservation, provider, pricing_model, operation_id, started, "cancelled", user_id, org_id)
            raise
        except Exception as exc:
            message = f"{type(exc).__name__}: {exc}"
            self._commit_failure(reservation, provider, pricing_model, operation_id, started, message, user_id, org_id)
            logger.error("Unexpected error during provider call", exc_info=True)
            raise

        estimated = TokenUsage(input_tokens=estimated_tokens)
        try:
            usage = usage_extractor(outcome.value) if usage_extractor else None
        except Exception:
            # Call succeeded: record estimated usage, then surface the error
            self._commit_success(reservation, provider, pricing_model, operation_id, started, estimated, user_id, org_id)
            logger.error("Usage extractor failed, recorded estimated tokens", exc_info=True)
            raise
        if usage is None:
            usage = estimated
        cost = self._commit_success(reservation, provider, pricing_model, operation_id, started, usage, user_id, org_id)
        return self._finish(
            GatewayResult(
                status=ResultStatus.SUCCESS,
                operation_id=operation_id,
                service_id=service_id,
                value=outcome.value,
                candidate_index=outcome.candidate_index,
                tokens_used=usage.total_tokens,
                cost=cost,
            ),
            started,
        )

    def _effective_policy(self, override: Optional[RetryPolicy]) -> RetryPolicy:
        policy = override or self.config.retry
        if policy.attempt_timeout is None:
            policy = policy.model_copy(update={"attempt_timeout": self.config.limits.per_request.timeout})
        return policy

    def _failure_result(self, operation_id: str, service_id: str, error: ClassifiedError) -> GatewayResult:
        if self.orchestrator.config.degrade_gracefully:
            return GatewayResult(
                status=ResultStatus.DEGRADED,
                operation_id=operation_id,
                service_id=service_id,
                value=self.orchestrator.degrade(operation_id, error),
                error=error,
            )
        return GatewayResult(
            status=ResultStatus.FAILED,
            operation_id=operation_id,
            service_id=service_id,
            error=error,
        )

    def _commit_success(
        self,
        reservation: Optional[Reservation],
        provider: str,
        model: str,
        operation_id: str,
        started: float,
        usage: TokenUsage,
        user_id: Optional[str],
        org_id: Optional[str],
    ) -> float:
        cost = self.tracker.calculate_cost(model, usage.input_tokens, usage.output_tokens)
        self.tracker.commit(
            reservation,
            UsageRecord(
                provider=provider,
                model=model,
                operation=operation_id,
                tokens_used=usage.total_tokens,
                cost=cost,
                duration_ms=self._elapsed_ms(started),
                timestamp=self._wall_clock(),
                success=True,
                user_id=user_id,
                org_id=org_id,
            ),
        )
        return cost

    def _commit_failure(
        self,
        reservation: Optional[Reservation],
        provider: str,
        model: str,
        operation_id: str,
        started: float,
        message: str,
        user_id: Optional[str],
        org_id: Optional[str],
    ) -> None:
        self.tracker.commit(
            reservation,
            UsageRecord(
                provider=provider,
                model=model,
                operation=operation_id,
                tokens_used=0,
                cost=0.0,
                duration_ms=self._elapsed_ms(started),
                timestamp=self._wall_clock(),
                success=False,
                error=message,
                user_id=user_id,
                org_id=org_id,
            ),
        )

    def _elapsed_ms(self, started: float) -> int:
        return max(0, int((self._clock() - started) * 1000))

    def _finish(self, result: GatewayResult, started: float) -> GatewayResult:
        duration_ms = self._elapsed_ms(started)
        operation_latency_seconds.labels(status=result.status.value).observe(duration_ms / 1000)
        logger.info(
            "Gateway call finished",
            operation_id=result.operation_id,
            service_id=result.service_id,
            status=result.status.value,
            from_cache=result.from_cache,
            candidate_index=result.candidate_index,
            duration_ms=duration_ms,
        )
        return replace(result, duration_ms=duration_ms)
