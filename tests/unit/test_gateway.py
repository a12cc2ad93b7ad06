"""
Unit tests for the Gateway facade.

Exercises the full call path (quota -> cache -> breaker -> fallback chain
-> usage record) with fake clocks and scripted operations.
"""

import asyncio
import random
from unittest.mock import AsyncMock

import pytest

from fixtures import AlwaysFailing, ScriptedOperation

from execution_gateway.errors.exceptions import ClassifiedError, DeadlineExceeded
from execution_gateway.gateway import Gateway
from execution_gateway.models.enums import CircuitState, ErrorKind, ResultStatus
from execution_gateway.models.policy_models import (
    CircuitBreakerConfig,
    FallbackConfig,
    ModelPricing,
    PerRequestLimits,
    UsageLimits,
)
from execution_gateway.models.usage_models import TokenUsage
from execution_gateway.persistence.store import InMemoryUsageStore


def unavailable() -> ClassifiedError:
    return ClassifiedError(ErrorKind.SERVICE_UNAVAILABLE, "503 Service Unavailable", retryable=True, status_code=503)


def bad_request() -> ClassifiedError:
    return ClassifiedError(ErrorKind.INVALID_REQUEST, "400 Bad Request", retryable=False, status_code=400)


@pytest.fixture
def gateway(gateway_config, sleep, clock, wall_clock) -> Gateway:
    return Gateway(gateway_config, sleep=sleep, clock=clock, wall_clock=wall_clock, rng=random.Random(0))


class TestSuccessPath:
    @pytest.mark.asyncio
    async def test_three_503s_then_success(self, gateway, sleep):
        primary = ScriptedOperation([unavailable(), unavailable(), unavailable()], result={"text": "caption"})

        result = await gateway.execute("content.generate", "openai", primary, estimated_tokens=100, model="gpt-4-turbo")

        assert result.status == ResultStatus.SUCCESS
        assert result.ok is True
        assert result.value == {"text": "caption"}
        assert result.candidate_index == 0
        assert primary.calls == 4
        assert sleep.delays == [1.0, 2.0, 4.0]

        records = gateway.tracker.records()
        assert len(records) == 1
        assert records[0].success is True
        assert records[0].tokens_used == 100
        assert gateway.tracker.pending_reservations() == []

    @pytest.mark.asyncio
    async def test_usage_extractor_sets_actual_cost(self, gateway):
        primary = ScriptedOperation(result={"usage": {"prompt_tokens": 1000, "completion_tokens": 500}})

        def extract(value):
            usage = value["usage"]
            return TokenUsage(input_tokens=usage["prompt_tokens"], output_tokens=usage["completion_tokens"])

        result = await gateway.execute(
            "content.generate",
            "openai",
            primary,
            estimated_tokens=200,
            model="gpt-4-turbo",
            user_id="u-1",
            org_id="org-9",
            usage_extractor=extract,
        )

        assert result.tokens_used == 1500
        assert result.cost == 0.025
        record = gateway.tracker.records()[0]
        assert (record.user_id, record.org_id) == ("u-1", "org-9")
        assert record.cost == 0.025

    @pytest.mark.asyncio
    async def test_fallback_candidate_reported(self, gateway):
        fallback = ScriptedOperation(result="from fallback")

        result = await gateway.execute(
            "content.generate", "openai", AlwaysFailing(bad_request()), [fallback], model="gpt-4-turbo"
        )

        assert result.status == ResultStatus.SUCCESS
        assert result.candidate_index == 1

    @pytest.mark.asyncio
    async def test_default_service_ids(self, gateway):
        with_model = await gateway.execute("a", "openai", ScriptedOperation(), model="gpt-4-turbo")
        without_model = await gateway.execute("b", "instagram", ScriptedOperation())
        explicit = await gateway.execute("c", "openai", ScriptedOperation(), service_id="openai-eu")

        assert with_model.service_id == "openai:gpt-4-turbo"
        assert without_model.service_id == "instagram"
        assert explicit.service_id == "openai-eu"


class TestCacheAndQuota:
    @pytest.mark.asyncio
    async def test_cache_hit_skips_provider_and_usage(self, gateway):
        primary = ScriptedOperation(result="fresh")

        first = await gateway.execute("schedule.optimal_times", "openai", primary, estimated_tokens=50)
        second = await gateway.execute("schedule.optimal_times", "openai", primary, estimated_tokens=50)

        assert first.from_cache is False
        assert second.from_cache is True
        assert second.value == "fresh"
        assert primary.calls == 1
        assert len(gateway.tracker.records()) == 1
        assert gateway.tracker.pending_reservations() == []

    @pytest.mark.asyncio
    async def test_per_request_denial_makes_no_attempt(self, gateway):
        primary = ScriptedOperation()

        result = await gateway.execute("content.generate", "openai", primary, estimated_tokens=5000, model="gpt-4-turbo")

        assert result.status == ResultStatus.DENIED
        assert result.denial.reason == "Request exceeds token limit (5000 > 4000)"
        assert primary.calls == 0
        assert gateway.tracker.records() == []

    @pytest.mark.asyncio
    async def test_clear_cache(self, gateway):
        primary = ScriptedOperation(result="fresh")
        await gateway.execute("x", "openai", primary)

        gateway.clear_cache()
        await gateway.execute("x", "openai", primary)

        assert primary.calls == 2


class TestFailurePaths:
    @pytest.mark.asyncio
    async def test_exhausted_chain_degrades(self, gateway):
        result = await gateway.execute("analysis.engagement", "openai", AlwaysFailing(bad_request()), model="gpt-4-turbo")

        assert result.status == ResultStatus.DEGRADED
        assert result.value == {"score": 0, "insights": [], "error": "Analysis unavailable"}
        assert result.error.kind == ErrorKind.INVALID_REQUEST
        record = gateway.tracker.records()[0]
        assert record.success is False
        assert record.tokens_used == 0
        assert record.cost == 0.0
        assert record.error == "400 Bad Request"

    @pytest.mark.asyncio
    async def test_exhausted_chain_fails_without_degradation(self, gateway):
        gateway.update_config(fallback=FallbackConfig(degrade_gracefully=False))

        result = await gateway.execute("analysis.engagement", "openai", AlwaysFailing(bad_request()))

        assert result.status == ResultStatus.FAILED
        assert result.value is None
        assert result.error.remediation == "Review and fix request parameters"

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_attempt_or_record(self, gateway):
        gateway.update_config(
            circuit=CircuitBreakerConfig(failure_threshold=1),
            fallback=FallbackConfig(degrade_gracefully=False),
        )
        primary = AlwaysFailing(bad_request())

        await gateway.execute("image.generate", "openai", primary, model="dall-e-3")
        rejected = await gateway.execute("image.generate", "openai", primary, model="dall-e-3")

        assert primary.calls == 1
        assert rejected.status == ResultStatus.FAILED
        assert rejected.error.kind == ErrorKind.SERVICE_UNAVAILABLE
        assert rejected.error.retryable is False
        assert len(gateway.tracker.records()) == 1
        assert gateway.tracker.pending_reservations() == []
        assert gateway.circuit_status("openai:dall-e-3").state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_reset_circuit_allows_calls_again(self, gateway):
        gateway.update_config(circuit=CircuitBreakerConfig(failure_threshold=1))
        await gateway.execute("x", "openai", AlwaysFailing(bad_request()))

        gateway.reset_circuit("openai")
        result = await gateway.execute("y", "openai", ScriptedOperation(result="back"))

        assert result.value == "back"
        assert [s.state for s in gateway.circuit_status()] == [CircuitState.CLOSED]

    @pytest.mark.asyncio
    async def test_deadline_exceeded_propagates_and_records_failure(self, gateway, clock):
        with pytest.raises(DeadlineExceeded):
            await gateway.execute(
                "content.generate", "openai", AlwaysFailing(unavailable()), deadline=clock() + 2.5
            )

        record = gateway.tracker.records()[0]
        assert record.success is False
        assert gateway.tracker.pending_reservations() == []

    @pytest.mark.asyncio
    async def test_cancellation_propagates_and_releases_hold(self, gateway):
        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(gateway.execute("content.generate", "openai", hang, estimated_tokens=300))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert gateway.tracker.pending_reservations() == []
        assert gateway.tracker.records()[0].error == "cancelled"

    @pytest.mark.asyncio
    async def test_expired_deadline_leaves_circuit_and_ledger_untouched(self, gateway, clock):
        primary = ScriptedOperation()

        for _ in range(5):
            with pytest.raises(DeadlineExceeded):
                await gateway.execute("x", "openai", primary, estimated_tokens=100, deadline=clock() - 1)

        status = gateway.circuit_status("openai")
        assert primary.calls == 0
        assert status.state == CircuitState.CLOSED
        assert status.consecutive_failures == 0
        assert gateway.tracker.records() == []
        assert gateway.tracker.pending_reservations() == []

    @pytest.mark.asyncio
    async def test_raising_usage_extractor_records_call_and_propagates(self, gateway):
        def extract(value):
            return value["usage"]

        with pytest.raises(KeyError):
            await gateway.execute(
                "x", "openai", ScriptedOperation(result={}), estimated_tokens=500, usage_extractor=extract
            )

        record = gateway.tracker.records()[0]
        assert record.success is True
        assert record.tokens_used == 500
        assert gateway.tracker.pending_reservations() == []

    @pytest.mark.asyncio
    async def test_unclassified_error_settles_hold(self, gateway_config, sleep, clock, wall_clock):
        def broken_classifier(error, **kwargs):
            raise RuntimeError("classifier bug")

        gateway = Gateway(gateway_config, classifier=broken_classifier, sleep=sleep, clock=clock, wall_clock=wall_clock)

        with pytest.raises(RuntimeError):
            await gateway.execute("x", "openai", AlwaysFailing(ValueError("boom")), estimated_tokens=100)

        record = gateway.tracker.records()[0]
        assert record.success is False
        assert record.error == "RuntimeError: classifier bug"
        assert gateway.tracker.pending_reservations() == []


class TestConfigurationAndLifecycle:
    @pytest.mark.asyncio
    async def test_update_limits_and_pricing(self, gateway):
        gateway.update_config(
            limits=UsageLimits(per_request=PerRequestLimits(tokens=10)),
            pricing={"local-llm": ModelPricing(input_rate=1.0, output_rate=1.0)},
        )

        denied = await gateway.execute("x", "openai", ScriptedOperation(), estimated_tokens=20)
        priced = await gateway.execute("y", "local", ScriptedOperation(), estimated_tokens=10, model="local-llm")

        assert denied.status == ResultStatus.DENIED
        assert priced.cost == 0.01
        assert "local-llm" in gateway.config.pricing
        assert "gpt-4-turbo" in gateway.config.pricing

    @pytest.mark.asyncio
    async def test_start_loads_history_and_close_flushes(self, gateway_config, wall_clock, make_record):
        store = InMemoryUsageStore()
        await store.save([make_record(tokens_used=700)])

        async with Gateway(gateway_config, store=store, wall_clock=wall_clock, flush_interval=60) as gateway:
            assert gateway.tracker.check_quota("daily").used.tokens == 700
            await gateway.execute("x", "openai", ScriptedOperation(), estimated_tokens=100)

        assert len(await store.load()) == 2

    @pytest.mark.asyncio
    async def test_close_closes_store(self, gateway_config, wall_clock):
        store = InMemoryUsageStore()
        store.close = AsyncMock()
        gateway = Gateway(gateway_config, store=store, wall_clock=wall_clock)

        await gateway.start()
        await gateway.close()

        store.close.assert_awaited_once()

    def test_from_settings(self, test_settings):
        gateway = Gateway.from_settings(test_settings)

        assert gateway.config.retry.max_attempts == 4
        assert isinstance(gateway.store, InMemoryUsageStore)
        assert gateway.flusher is not None
