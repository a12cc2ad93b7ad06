"""
Usage accounting models.

UsageRecord is the immutable, append-only fact written once per attempted
provider call. UsageQuota, CostBreakdown and UsageStats are read-only
snapshots derived from the ledger.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from execution_gateway.models.enums import QuotaPeriod


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class UsageRecord(BaseModel):
    """
    A single attempted provider call.

    Created exactly once per call that passed the quota pre-check,
    successful or not. Never mutated after creation.
    """
    model_config = ConfigDict(frozen=True)

    provider: str = Field(..., description="Logical provider (e.g., 'openai')")
    model: str = Field(..., description="Model name used for pricing")
    operation: str = Field(..., description="Operation id the call served")
    tokens_used: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0.0, description="USD")
    duration_ms: int = Field(default=0, ge=0)
    timestamp: datetime = Field(default_factory=utc_now)
    success: bool = Field(...)
    error: Optional[str] = Field(default=None, description="Failure description for unsuccessful calls")
    user_id: Optional[str] = None
    org_id: Optional[str] = None


class TokenUsage(BaseModel):
    """Token counts reported for a completed call."""
    model_config = ConfigDict(frozen=True)

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class UsageAmounts(BaseModel):
    """Tokens, cost and request count for one window."""
    model_config = ConfigDict(frozen=True)

    tokens: int = 0
    cost: float = 0.0
    requests: int = 0


class UsageQuota(BaseModel):
    """Derived snapshot of a window's consumption against its ceilings."""
    model_config = ConfigDict(frozen=True)

    period: QuotaPeriod
    used: UsageAmounts
    remaining: UsageAmounts
    percent_used: float = Field(..., ge=0.0, description="Max ratio across tokens/cost/requests, in percent")
    reset_at: datetime


class CostBreakdown(BaseModel):
    """Cost grouped by provider and model."""

    provider: str
    model: str
    total_cost: float = 0.0
    token_count: int = 0
    request_count: int = 0
    average_cost_per_request: float = 0.0


class UsageGroup(BaseModel):
    """Aggregate row for grouped statistics and timelines."""

    key: str
    tokens: int = 0
    cost: float = 0.0
    requests: int = 0


class UsageTotals(BaseModel):
    """Totals over a statistics window."""

    tokens: int = 0
    cost: float = 0.0
    requests: int = 0
    success_rate: float = Field(default=0.0, description="Percent of successful calls")
    avg_duration_ms: float = 0.0


class UsageStats(BaseModel):
    """Statistics over an arbitrary time range."""

    start: datetime
    end: datetime
    total: UsageTotals
    breakdown: Optional[List[UsageGroup]] = None
    timeline: List[UsageGroup] = Field(default_factory=list)


class Reservation(BaseModel):
    """
    Budget held for an admitted call until its usage is committed.

    Outstanding reservations count against the daily ceilings so two
    callers racing for the last unit of budget cannot both be admitted.
    """
    model_config = ConfigDict(frozen=True)

    reservation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    model: str
    estimated_tokens: int = Field(..., ge=0)
    estimated_cost: float = Field(..., ge=0.0)
    created_at: datetime = Field(default_factory=utc_now)


class ExecutionDecision(BaseModel):
    """
    Pre-flight verdict: Allowed, or Denied with a reason and suggestion.

    A denial is never a provider failure: no attempt was made and no cost
    was incurred.
    """
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Optional[str] = None
    suggestion: Optional[str] = None
    reservation: Optional[Reservation] = None

    @classmethod
    def allow(cls, reservation: Optional[Reservation] = None) -> "ExecutionDecision":
        return cls(allowed=True, reservation=reservation)

    @classmethod
    def deny(cls, reason: str, suggestion: Optional[str] = None) -> "ExecutionDecision":
        return cls(allowed=False, reason=reason, suggestion=suggestion)


class UsageAlert(BaseModel):
    """Threshold breach event handed to alert sinks."""
    model_config = ConfigDict(frozen=True)

    period: QuotaPeriod
    threshold: int
    percent_used: float
    message: str
    triggered_at: datetime = Field(default_factory=utc_now)

    @property
    def alert_key(self) -> str:
        return f"{self.period.value}-{self.threshold}"
