"""Data models for the execution gateway (configuration, usage, results)."""

from execution_gateway.models.enums import CircuitState, ErrorKind, QuotaPeriod, ResultStatus
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
from execution_gateway.models.usage_models import (
    CostBreakdown,
    ExecutionDecision,
    Reservation,
    TokenUsage,
    UsageAlert,
    UsageAmounts,
    UsageQuota,
    UsageRecord,
    UsageStats,
)

__all__ = [
    "CircuitState",
    "ErrorKind",
    "QuotaPeriod",
    "ResultStatus",
    "DEFAULT_PRICING",
    "DEFAULT_TOKEN_RATE",
    "CircuitBreakerConfig",
    "FallbackConfig",
    "GatewayConfig",
    "ModelPricing",
    "PerRequestLimits",
    "PeriodLimits",
    "RetryPolicy",
    "UsageLimits",
    "CostBreakdown",
    "ExecutionDecision",
    "Reservation",
    "TokenUsage",
    "UsageAlert",
    "UsageAmounts",
    "UsageQuota",
    "UsageRecord",
    "UsageStats",
]
