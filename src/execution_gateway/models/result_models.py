"""
Gateway call results.

Expected outcomes (success, degraded placeholder, quota denial, classified
failure) are reported as a tagged GatewayResult instead of exceptions so
callers branch on ``status`` rather than on exception types.
"""

from dataclasses import dataclass
from typing import Any, Optional

from execution_gateway.errors.exceptions import ClassifiedError
from execution_gateway.models.enums import ResultStatus
from execution_gateway.models.usage_models import ExecutionDecision


@dataclass(frozen=True)
class GatewayResult:
    """
    Outcome of one ``Gateway.execute`` call.

    Attributes:
        status: success | degraded | denied | failed
        operation_id: Logical operation identity
        service_id: Circuit key the call ran under
        value: Provider result (success) or placeholder (degraded)
        error: Classified failure (degraded / failed)
        denial: Pre-flight denial with reason and suggestion (denied)
        from_cache: Value served from the response cache
        candidate_index: Chain position that succeeded (0 = primary)
        duration_ms: Wall time spent in the gateway
        tokens_used: Tokens recorded for the call
        cost: USD recorded for the call
    """

    status: ResultStatus
    operation_id: str
    service_id: str
    value: Any = None
    error: Optional[ClassifiedError] = None
    denial: Optional[ExecutionDecision] = None
    from_cache: bool = False
    candidate_index: Optional[int] = None
    duration_ms: int = 0
    tokens_used: int = 0
    cost: float = 0.0

    @property
    def ok(self) -> bool:
        """True when ``value`` holds a real provider result."""
        return self.status == ResultStatus.SUCCESS
