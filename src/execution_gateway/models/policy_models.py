"""
Configuration models for the gateway.

These are the externally supplied knobs (retry policy, fallback/cache
behaviour, circuit breaker thresholds, usage ceilings and the price table).
They are validated at construction time so an invalid policy fails fast
instead of misbehaving at the first provider outage.
"""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from execution_gateway.models.enums import QuotaPeriod


class RetryPolicy(BaseModel):
    """
    Retry budget for a single candidate operation.

    Delays are expressed in seconds. The delay before retry ``n`` is
    ``min(max_delay, initial_delay * backoff_multiplier ** (n - 1))``,
    optionally perturbed by +/-25% jitter.
    """
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1, description="Total attempts including the first one")
    initial_delay: float = Field(default=1.0, gt=0.0, description="Delay after the first failure (seconds)")
    max_delay: float = Field(default=30.0, gt=0.0, description="Upper bound for any computed delay (seconds)")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Exponential growth factor")
    jitter_enabled: bool = Field(default=True, description="Perturb delays by a uniform +/-25% factor")
    attempt_timeout: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="Per-attempt timeout in seconds (None = wait for the operation)",
    )

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> "RetryPolicy":
        if self.max_delay < self.initial_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})"
            )
        return self


class FallbackConfig(BaseModel):
    """Fallback chain, response cache and degradation behaviour."""
    model_config = ConfigDict(frozen=True)

    enable_fallback: bool = Field(default=True, description="Try fallback candidates after the primary")
    degrade_gracefully: bool = Field(
        default=True,
        description="Return a placeholder instead of raising when every candidate fails",
    )
    cache_responses: bool = Field(default=True, description="Cache successful chain results per operation id")
    cache_ttl: float = Field(default=3600.0, gt=0.0, description="Cache entry lifetime (seconds)")
    cache_max_entries: int = Field(default=1024, ge=1, description="Bound on cached entries")


class CircuitBreakerConfig(BaseModel):
    """Thresholds for the per-service circuit breaker."""
    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(default=5, ge=1, description="Consecutive failures before opening")
    timeout_duration: float = Field(default=60.0, gt=0.0, description="Open period before a trial (seconds)")
    success_threshold: int = Field(default=2, ge=1, description="Trial successes needed to close")
    half_open_max_calls: int = Field(default=1, ge=1, description="Concurrent trial calls while half-open")


class PeriodLimits(BaseModel):
    """Ceilings for one accounting window."""
    model_config = ConfigDict(frozen=True)

    tokens: int = Field(..., gt=0)
    cost: float = Field(..., gt=0.0, description="USD")
    requests: int = Field(..., gt=0)


class PerRequestLimits(BaseModel):
    """Ceilings for a single call."""
    model_config = ConfigDict(frozen=True)

    tokens: int = Field(default=4000, gt=0)
    timeout: float = Field(default=30.0, gt=0.0, description="Per-attempt timeout (seconds)")


class UsageLimits(BaseModel):
    """Daily, monthly and per-request usage ceilings."""
    model_config = ConfigDict(frozen=True)

    daily: PeriodLimits = Field(
        default_factory=lambda: PeriodLimits(tokens=100_000, cost=10.0, requests=1_000)
    )
    monthly: PeriodLimits = Field(
        default_factory=lambda: PeriodLimits(tokens=3_000_000, cost=300.0, requests=30_000)
    )
    per_request: PerRequestLimits = Field(default_factory=PerRequestLimits)

    def for_period(self, period: QuotaPeriod) -> PeriodLimits:
        """Return the ceilings of the given window."""
        return self.daily if period == QuotaPeriod.DAILY else self.monthly


class ModelPricing(BaseModel):
    """USD price per 1K tokens for a single model."""
    model_config = ConfigDict(frozen=True)

    input_rate: float = Field(..., ge=0.0, description="USD per 1K input tokens")
    output_rate: float = Field(..., ge=0.0, description="USD per 1K output tokens")


# Fallback rate for models missing from the table (USD per 1K tokens)
DEFAULT_TOKEN_RATE = 0.001

DEFAULT_PRICING: Dict[str, ModelPricing] = {
    "gpt-4-turbo": ModelPricing(input_rate=0.01, output_rate=0.03),
    "gpt-3.5-turbo": ModelPricing(input_rate=0.001, output_rate=0.002),
    "claude-3-opus": ModelPricing(input_rate=0.015, output_rate=0.075),
    "claude-3-sonnet": ModelPricing(input_rate=0.003, output_rate=0.015),
    "gemini-pro": ModelPricing(input_rate=0.001, output_rate=0.002),
    "dall-e-3": ModelPricing(input_rate=0.04, output_rate=0.04),
    "stable-diffusion-xl": ModelPricing(input_rate=0.002, output_rate=0.002),
}


class GatewayConfig(BaseModel):
    """
    Complete gateway configuration.

    Supplied at Gateway construction (directly or via
    ``Settings.to_gateway_config()``) and hot-updatable through
    ``Gateway.update_config``.
    """
    model_config = ConfigDict(frozen=True)

    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    circuit: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    limits: UsageLimits = Field(default_factory=UsageLimits)
    pricing: Dict[str, ModelPricing] = Field(default_factory=lambda: dict(DEFAULT_PRICING))
    default_token_rate: float = Field(default=DEFAULT_TOKEN_RATE, ge=0.0)
