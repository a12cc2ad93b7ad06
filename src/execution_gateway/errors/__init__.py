"""
Error taxonomy and classification.

Main Components:
    - classify: Turn any raw failure into a ClassifiedError
    - ClassifiedError: Typed failure with retryability verdict and remediation
    - CircuitOpenError: Call rejected by an open circuit
    - DeadlineExceeded: Caller deadline expired (distinct from provider failure)
    - UsageLimitExceeded: Recording usage would breach a hard ceiling
"""

from execution_gateway.errors.classifier import DEFAULT_RETRY_AFTER_SECONDS, classify
from execution_gateway.errors.exceptions import (
    CircuitOpenError,
    ClassifiedError,
    ConfigurationError,
    DeadlineExceeded,
    GatewayError,
    UsageLimitExceeded,
)

__all__ = [
    "classify",
    "DEFAULT_RETRY_AFTER_SECONDS",
    "GatewayError",
    "ClassifiedError",
    "CircuitOpenError",
    "DeadlineExceeded",
    "UsageLimitExceeded",
    "ConfigurationError",
]
