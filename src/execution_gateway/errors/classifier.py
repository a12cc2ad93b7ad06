"""
Error classifier for provider failures.

Turns an arbitrary failure (httpx status error, transport error, OS-level
socket error, provider error payload) into a ClassifiedError carrying a
retryability verdict and a remediation hint.

Classification precedence (first match wins):
    1. Invalid credential   (401, "api key")            -> permanent
    2. Rate limited         (429)                       -> retryable, Retry-After or 60s
    3. Quota exceeded       (quota code, "quota")       -> permanent
    4. Service unavailable  (503)                       -> retryable
    5. Timeout              (transport timeout)         -> retryable
    6. Network failure      (refused / DNS)             -> retryable
    7. Invalid request      (400)                       -> permanent
    8. Content rejected     (content policy)            -> permanent
    9. Payload too large    (413, context length)       -> permanent
   10. Unknown              retryable only for 5xx or transport-level failures

Credential and quota failures are never retried: retrying them burns budget
and can trigger provider-side account lockout.
"""

import asyncio
import errno
import socket
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import httpx

from execution_gateway.errors.exceptions import CircuitOpenError, ClassifiedError
from execution_gateway.models.enums import ErrorKind

DEFAULT_RETRY_AFTER_SECONDS = 60.0

_CREDENTIAL_CODES = {"invalid_api_key", "invalid_credentials", "authentication_error"}
_RATE_LIMIT_CODES = {"rate_limit_exceeded", "rate_limited"}
_QUOTA_CODES = {"quota_exceeded", "insufficient_quota"}
_UNAVAILABLE_CODES = {"model_unavailable", "service_unavailable", "overloaded_error"}
_TIMEOUT_CODES = {"timeout", "ETIMEDOUT", "ESOCKETTIMEDOUT"}
_NETWORK_CODES = {"ECONNREFUSED", "ENOTFOUND", "ECONNRESET", "EAI_AGAIN", "EHOSTUNREACH", "ENETUNREACH"}
_INVALID_REQUEST_CODES = {"invalid_request", "invalid_request_error"}
_CONTENT_CODES = {"content_filter", "content_policy_violation"}
_PAYLOAD_CODES = {"context_length_exceeded", "request_too_large"}

REMEDIATIONS = {
    ErrorKind.INVALID_CREDENTIAL: "Check API key configuration in settings",
    ErrorKind.RATE_LIMITED: "Wait before retrying or use a different provider",
    ErrorKind.QUOTA_EXCEEDED: "Upgrade plan or switch to a different provider",
    ErrorKind.SERVICE_UNAVAILABLE: "Try a different model or wait for availability",
    ErrorKind.TIMEOUT: "Reduce request size or try a faster model",
    ErrorKind.NETWORK_FAILURE: "Check network connection",
    ErrorKind.INVALID_REQUEST: "Review and fix request parameters",
    ErrorKind.CONTENT_REJECTED: "Modify content to comply with policies",
    ErrorKind.PAYLOAD_TOO_LARGE: "Reduce input size or use a model with larger context window",
}


@dataclass(frozen=True)
class _Signals:
    """Raw classification inputs pulled out of a failure."""

    status_code: Optional[int]
    error_code: Optional[str]
    transport_code: Optional[str]
    message: str
    retry_after: Optional[float]


def classify(
    error: Any,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> ClassifiedError:
    """
    Classify a raw failure.

    Args:
        error: Exception raised by the wrapped operation, or a provider
            error payload (mapping with status/code/message/headers keys)
        provider: Logical provider, attached for diagnostics
        model: Model name, attached for diagnostics

    Returns:
        ClassifiedError (an already-classified error is returned unchanged)
    """
    if isinstance(error, ClassifiedError):
        return error

    original = error if isinstance(error, BaseException) else None

    if isinstance(error, CircuitOpenError):
        return ClassifiedError(
            ErrorKind.SERVICE_UNAVAILABLE,
            error.message,
            retryable=False,
            retry_after=error.retry_in,
            remediation="Service is cooling down after repeated failures; try another provider",
            provider=provider,
            model=model,
            original=original,
        )

    signals = _extract_signals(error)
    kind, retryable = _match(signals)

    retry_after = None
    if kind == ErrorKind.RATE_LIMITED:
        retry_after = signals.retry_after if signals.retry_after is not None else DEFAULT_RETRY_AFTER_SECONDS

    return ClassifiedError(
        kind,
        signals.message,
        retryable=retryable,
        retry_after=retry_after,
        remediation=REMEDIATIONS.get(kind),
        status_code=signals.status_code,
        error_code=signals.error_code,
        provider=provider,
        model=model,
        original=original,
    )


def _match(signals: _Signals) -> tuple[ErrorKind, bool]:
    status = signals.status_code
    code = signals.error_code
    transport = signals.transport_code
    message = signals.message.lower()

    if status == 401 or code in _CREDENTIAL_CODES or "api key" in message or "api_key" in message:
        return ErrorKind.INVALID_CREDENTIAL, False
    if status == 429 or code in _RATE_LIMIT_CODES:
        return ErrorKind.RATE_LIMITED, True
    if code in _QUOTA_CODES or "quota" in message:
        return ErrorKind.QUOTA_EXCEEDED, False
    if status == 503 or code in _UNAVAILABLE_CODES:
        return ErrorKind.SERVICE_UNAVAILABLE, True
    if transport in _TIMEOUT_CODES or code in _TIMEOUT_CODES:
        return ErrorKind.TIMEOUT, True
    if transport in _NETWORK_CODES or code in _NETWORK_CODES:
        return ErrorKind.NETWORK_FAILURE, True
    if status == 400 or code in _INVALID_REQUEST_CODES:
        return ErrorKind.INVALID_REQUEST, False
    if code in _CONTENT_CODES or "content policy" in message:
        return ErrorKind.CONTENT_REJECTED, False
    if status == 413 or code in _PAYLOAD_CODES or "context length" in message:
        return ErrorKind.PAYLOAD_TOO_LARGE, False

    return ErrorKind.UNKNOWN, status is None or status >= 500


def _extract_signals(error: Any) -> _Signals:
    if isinstance(error, Mapping):
        return _signals_from_mapping(error)

    response = getattr(error, "response", None)
    status = _as_status(getattr(error, "status_code", None)) or _as_status(getattr(error, "status", None))
    if status is None and response is not None:
        status = _as_status(getattr(response, "status_code", None)) or _as_status(
            getattr(response, "status", None)
        )

    body = _response_error_body(response)
    code = getattr(error, "code", None)
    error_code = code if isinstance(code, str) else None
    if error_code is None:
        error_code = _as_str(body.get("code")) or _as_str(body.get("type"))

    message = _as_str(body.get("message")) or str(error) or type(error).__name__

    retry_after = _parse_retry_after(getattr(error, "retry_after", None))
    if retry_after is None and response is not None:
        headers = getattr(response, "headers", None)
        if headers is not None:
            retry_after = _parse_retry_after(headers.get("retry-after"))

    return _Signals(
        status_code=status,
        error_code=error_code,
        transport_code=_transport_code(error),
        message=message,
        retry_after=retry_after,
    )


def _signals_from_mapping(payload: Mapping) -> _Signals:
    nested = payload.get("error")
    body = nested if isinstance(nested, Mapping) else {}
    status = _as_status(payload.get("status_code")) or _as_status(payload.get("status"))
    error_code = _as_str(payload.get("code")) or _as_str(body.get("code")) or _as_str(body.get("type"))
    message = (
        _as_str(payload.get("message"))
        or _as_str(body.get("message"))
        or (nested if isinstance(nested, str) else None)
        or "Unknown error"
    )
    retry_after = _parse_retry_after(payload.get("retry_after"))
    headers = payload.get("headers")
    if retry_after is None and isinstance(headers, Mapping):
        lowered = {str(k).lower(): v for k, v in headers.items()}
        retry_after = _parse_retry_after(lowered.get("retry-after"))
    return _Signals(
        status_code=status,
        error_code=error_code,
        transport_code=None,
        message=message,
        retry_after=retry_after,
    )


def _transport_code(error: Any) -> Optional[str]:
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return "ETIMEDOUT"
    if isinstance(error, socket.gaierror):
        return "ENOTFOUND"
    if isinstance(error, ConnectionRefusedError):
        return "ECONNREFUSED"
    if isinstance(error, ConnectionResetError):
        return "ECONNRESET"
    if isinstance(error, (httpx.ConnectError, httpx.NetworkError)):
        return "ECONNREFUSED"
    if isinstance(error, OSError) and isinstance(error.errno, int):
        return errno.errorcode.get(error.errno)
    code = getattr(error, "code", None)
    if isinstance(code, str) and code.isupper():
        return code
    return None


def _response_error_body(response: Any) -> Mapping:
    if not isinstance(response, httpx.Response):
        return {}
    try:
        payload = response.json()
    except (ValueError, httpx.StreamError):
        # Undecodable body, or a streamed response whose body was never read
        return {}
    if not isinstance(payload, Mapping):
        return {}
    nested = payload.get("error")
    if isinstance(nested, Mapping):
        return nested
    if isinstance(nested, str):
        return {"message": nested}
    return payload


def _parse_retry_after(value: Any) -> Optional[float]:
    """Parse a Retry-After hint given as seconds or as an HTTP date."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return max(0.0, float(value))
    text = str(value).strip()
    if not text:
        return None
    try:
        return max(0.0, float(text))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _as_status(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if 100 <= value <= 599 else None


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None
