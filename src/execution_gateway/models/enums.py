"""
Enumerations for gateway data models.

All enums are closed taxonomies - no values outside these sets are permitted.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """
    Closed taxonomy of classified provider failures.

    Permanent kinds (credential, quota, bad request, content policy, payload
    size) are never retried. Transient kinds are retried locally and then
    escalated to the fallback chain.
    """

    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    NETWORK_FAILURE = "network_failure"
    INVALID_REQUEST = "invalid_request"
    CONTENT_REJECTED = "content_rejected"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    UNKNOWN = "unknown"


class CircuitState(str, Enum):
    """Circuit breaker state for a single service id."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class QuotaPeriod(str, Enum):
    """
    Accounting window for usage ceilings.

    Both windows are UTC calendar periods (midnight to midnight, first of
    the month to first of the next month).
    """

    DAILY = "daily"
    MONTHLY = "monthly"


class ResultStatus(str, Enum):
    """Outcome of a single Gateway.execute call."""

    SUCCESS = "success"
    DEGRADED = "degraded"
    DENIED = "denied"
    FAILED = "failed"
