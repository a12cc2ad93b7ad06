"""Shared test fixtures and configuration for all tests.

This conftest.py provides fake clocks, a recording sleep, test settings and
a deterministic gateway configuration used across unit and integration tests.
"""

import pytest

from fixtures import FakeClock, FakeWallClock, SleepRecorder

from execution_gateway.config import Settings
from execution_gateway.models.policy_models import (
    CircuitBreakerConfig,
    FallbackConfig,
    GatewayConfig,
    RetryPolicy,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_clock() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture
def sleep(clock: FakeClock) -> SleepRecorder:
    return SleepRecorder(clock)


@pytest.fixture
def test_settings() -> Settings:
    """Test settings with safe defaults for local testing.

    Override specific settings in individual tests as needed:
        def test_something(test_settings):
            test_settings.USAGE_STORE = "file"
    """
    return Settings(
        # === Application ===
        APP_NAME="Execution Gateway (Test)",
        LOG_LEVEL="DEBUG",
        ENVIRONMENT="development",

        # === Retry ===
        RETRY_MAX_ATTEMPTS=4,
        RETRY_INITIAL_DELAY=1.0,
        RETRY_MAX_DELAY=30.0,
        RETRY_JITTER_ENABLED=False,

        # === Usage Persistence ===
        USAGE_STORE="memory",
        REDIS_URL="redis://localhost:6379/0",
        REDIS_MAX_CONNECTIONS=10,
    )


@pytest.fixture
def gateway_config() -> GatewayConfig:
    """Deterministic configuration: no jitter, 4 attempts, 1-2-4-8s backoff."""
    return GatewayConfig(
        retry=RetryPolicy(
            max_attempts=4,
            initial_delay=1.0,
            max_delay=30.0,
            backoff_multiplier=2.0,
            jitter_enabled=False,
        ),
        fallback=FallbackConfig(),
        circuit=CircuitBreakerConfig(failure_threshold=5, timeout_duration=60.0, success_threshold=2),
    )
