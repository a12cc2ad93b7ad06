"""
Custom exceptions for the execution gateway.

These exceptions provide structured error handling for provider calls,
allowing the retry executor, circuit breaker and fallback orchestrator to
distinguish between failure modes and apply the appropriate recovery.
"""

from typing import TYPE_CHECKING, Any, Optional

from execution_gateway.models.enums import ErrorKind

if TYPE_CHECKING:
    from execution_gateway.models.usage_models import ExecutionDecision


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    All gateway-specific exceptions inherit from this to allow catching
    any gateway-related error with a single except clause.
    """
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ClassifiedError(GatewayError):
    """
    A provider failure after classification.

    Carries the verdict that drives the retry executor (``retryable``,
    ``retry_after``) and the ``remediation`` hint surfaced to operators.
    Constructed fresh for every failed attempt; attributes are read-only.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        retryable: bool,
        retry_after: Optional[float] = None,
        remediation: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        original: Optional[BaseException] = None,
    ):
        self._kind = kind
        self._retryable = retryable
        self._retry_after = retry_after
        self._remediation = remediation
        self._status_code = status_code
        self._error_code = error_code
        self._provider = provider
        self._model = model
        self._original = original
        super().__init__(message)
        self.details = self.to_dict()

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def retryable(self) -> bool:
        return self._retryable

    @property
    def retry_after(self) -> Optional[float]:
        """Provider-supplied wait hint in seconds."""
        return self._retry_after

    @property
    def remediation(self) -> Optional[str]:
        return self._remediation

    @property
    def status_code(self) -> Optional[int]:
        return self._status_code

    @property
    def error_code(self) -> Optional[str]:
        return self._error_code

    @property
    def provider(self) -> Optional[str]:
        return self._provider

    @property
    def model(self) -> Optional[str]:
        return self._model

    @property
    def original(self) -> Optional[BaseException]:
        """The raw failure this error was classified from."""
        return self._original

    def to_dict(self) -> dict[str, Any]:
        """Render for structured logs (the raw failure is reduced to its type)."""
        return {
            "kind": self._kind.value,
            "message": self.message,
            "retryable": self._retryable,
            "retry_after": self._retry_after,
            "remediation": self._remediation,
            "status_code": self._status_code,
            "error_code": self._error_code,
            "provider": self._provider,
            "model": self._model,
            "original_type": type(self._original).__name__ if self._original else None,
        }

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(kind={self._kind.value}, retryable={self._retryable}, "
            f"message={self.message!r})"
        )


class CircuitOpenError(GatewayError):
    """
    Raised when a call is rejected because the service's circuit is open.

    The wrapped operation was not invoked. ``retry_in`` is the remaining
    open period in seconds (0 while a half-open trial is in flight).
    """

    def __init__(self, service_id: str, retry_in: float):
        self.service_id = service_id
        self.retry_in = max(0.0, retry_in)
        super().__init__(
            f"Circuit breaker is open for {service_id} (retry in {self.retry_in:.1f}s)",
            details={"service_id": service_id, "retry_in": self.retry_in},
        )


class DeadlineExceeded(GatewayError):
    """
    Raised when the caller's deadline expires before an operation succeeds.

    Distinct from ClassifiedError: the caller gave up, the provider did not
    necessarily fail.
    """

    def __init__(self, operation_id: str, attempts: int, last_error: Optional[ClassifiedError] = None):
        self.operation_id = operation_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Deadline exceeded for {operation_id} after {attempts} attempt(s)",
            details={
                "operation_id": operation_id,
                "attempts": attempts,
                "last_error_kind": last_error.kind.value if last_error else None,
            },
        )


class UsageLimitExceeded(GatewayError):
    """
    Raised when recording usage would breach a hard ceiling.

    The record is not appended. ``decision`` carries the denial reason and
    suggestion in the same shape as a pre-flight denial.
    """

    def __init__(self, decision: "ExecutionDecision"):
        self.decision = decision
        super().__init__(
            decision.reason or "Usage limit exceeded",
            details={"reason": decision.reason, "suggestion": decision.suggestion},
        )


class ConfigurationError(GatewayError):
    """Raised when gateway configuration fails validation."""
    pass
