"""
Configuration settings for the Execution Gateway.

All settings are loaded from environment variables (prefix ``GATEWAY_``)
with sensible defaults. Use a .env file for local development.

The library itself only uses the configuration it is handed;
``Settings.to_gateway_config()`` turns these flat settings into the
validated GatewayConfig.
"""

from typing import Optional

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from execution_gateway.errors.exceptions import ConfigurationError
from execution_gateway.models.policy_models import (
    DEFAULT_PRICING,
    DEFAULT_TOKEN_RATE,
    CircuitBreakerConfig,
    FallbackConfig,
    GatewayConfig,
    ModelPricing,
    PerRequestLimits,
    PeriodLimits,
    RetryPolicy,
    UsageLimits,
)


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Application ===
    APP_NAME: str = "Execution Gateway"
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"  # "production" switches logs to JSON

    # === Retry ===
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_INITIAL_DELAY: float = 1.0  # seconds
    RETRY_MAX_DELAY: float = 30.0  # seconds
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    RETRY_JITTER_ENABLED: bool = True
    RETRY_ATTEMPT_TIMEOUT: Optional[float] = None  # None = per-request timeout

    # === Fallback & Cache ===
    ENABLE_FALLBACK: bool = True
    DEGRADE_GRACEFULLY: bool = True
    CACHE_RESPONSES: bool = True
    CACHE_TTL: float = 3600.0  # seconds
    CACHE_MAX_ENTRIES: int = 1024

    # === Circuit Breaker ===
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_TIMEOUT_DURATION: float = 60.0  # seconds
    CIRCUIT_SUCCESS_THRESHOLD: int = 2
    CIRCUIT_HALF_OPEN_MAX_CALLS: int = 1

    # === Usage Limits ===
    DAILY_TOKEN_LIMIT: int = 100_000
    DAILY_COST_LIMIT: float = 10.0  # USD
    DAILY_REQUEST_LIMIT: int = 1_000
    MONTHLY_TOKEN_LIMIT: int = 3_000_000
    MONTHLY_COST_LIMIT: float = 300.0  # USD
    MONTHLY_REQUEST_LIMIT: int = 30_000
    PER_REQUEST_TOKEN_LIMIT: int = 4_000
    PER_REQUEST_TIMEOUT: float = 30.0  # seconds

    # === Pricing ===
    DEFAULT_TOKEN_RATE: float = DEFAULT_TOKEN_RATE  # USD per 1K tokens for unknown models
    PRICING_OVERRIDES: dict[str, ModelPricing] = {}  # merged over the built-in table

    # === Usage Persistence ===
    USAGE_STORE: str = "memory"  # memory | file | redis
    USAGE_FILE_PATH: str = "data/usage_ledger.json"
    USAGE_FLUSH_INTERVAL: float = 30.0  # seconds
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50
    REDIS_USAGE_KEY: str = "gateway:usage:records"

    def to_gateway_config(self) -> GatewayConfig:
        """
        Build the validated gateway configuration.

        Raises:
            ConfigurationError: Any value is out of range or inconsistent
        """
        try:
            return GatewayConfig(
                retry=RetryPolicy(
                    max_attempts=self.RETRY_MAX_ATTEMPTS,
                    initial_delay=self.RETRY_INITIAL_DELAY,
                    max_delay=self.RETRY_MAX_DELAY,
                    backoff_multiplier=self.RETRY_BACKOFF_MULTIPLIER,
                    jitter_enabled=self.RETRY_JITTER_ENABLED,
                    attempt_timeout=self.RETRY_ATTEMPT_TIMEOUT,
                ),
                fallback=FallbackConfig(
                    enable_fallback=self.ENABLE_FALLBACK,
                    degrade_gracefully=self.DEGRADE_GRACEFULLY,
                    cache_responses=self.CACHE_RESPONSES,
                    cache_ttl=self.CACHE_TTL,
                    cache_max_entries=self.CACHE_MAX_ENTRIES,
                ),
                circuit=CircuitBreakerConfig(
                    failure_threshold=self.CIRCUIT_FAILURE_THRESHOLD,
                    timeout_duration=self.CIRCUIT_TIMEOUT_DURATION,
                    success_threshold=self.CIRCUIT_SUCCESS_THRESHOLD,
                    half_open_max_calls=self.CIRCUIT_HALF_OPEN_MAX_CALLS,
                ),
                limits=UsageLimits(
                    daily=PeriodLimits(
                        tokens=self.DAILY_TOKEN_LIMIT,
                        cost=self.DAILY_COST_LIMIT,
                        requests=self.DAILY_REQUEST_LIMIT,
                    ),
                    monthly=PeriodLimits(
                        tokens=self.MONTHLY_TOKEN_LIMIT,
                        cost=self.MONTHLY_COST_LIMIT,
                        requests=self.MONTHLY_REQUEST_LIMIT,
                    ),
                    per_request=PerRequestLimits(
                        tokens=self.PER_REQUEST_TOKEN_LIMIT,
                        timeout=self.PER_REQUEST_TIMEOUT,
                    ),
                ),
                pricing={**DEFAULT_PRICING, **self.PRICING_OVERRIDES},
                default_token_rate=self.DEFAULT_TOKEN_RATE,
            )
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid gateway configuration: {e.error_count()} error(s)",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    def build_usage_store(self):
        """
        Build the configured usage store backend.

        Returns:
            UsageStore implementation

        Raises:
            ConfigurationError: Unknown USAGE_STORE value
        """
        # Imported here: the Redis client module reads Settings itself
        from execution_gateway.persistence.store import InMemoryUsageStore, JsonFileUsageStore

        backend = self.USAGE_STORE.lower()
        if backend == "memory":
            return InMemoryUsageStore()
        if backend == "file":
            return JsonFileUsageStore(self.USAGE_FILE_PATH)
        if backend == "redis":
            from execution_gateway.persistence.redis_client import RedisClient
            from execution_gateway.persistence.redis_store import RedisUsageStore

            return RedisUsageStore(RedisClient.get_async_client(self), key=self.REDIS_USAGE_KEY)
        raise ConfigurationError(
            f"Unknown usage store backend: {self.USAGE_STORE!r}",
            details={"supported": ["memory", "file", "redis"]},
        )


# Global settings instance
settings = Settings()
