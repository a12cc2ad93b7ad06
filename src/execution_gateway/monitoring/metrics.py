"""Custom Prometheus metrics for the Resilient Execution Gateway.

These metrics are registered in the default registry; the surrounding
application exposes them (e.g. via prometheus_client.start_http_server).
Alert rules should be configured for:
- circuit_state (any service stuck in OPEN)
- degraded_responses_total (users are seeing placeholder content)
- quota_denials_total (tenants hitting their ceilings)
- usage_alerts_total (daily/monthly threshold breaches)
"""

from prometheus_client import Counter, Gauge, Histogram

# === Attempt & Retry Metrics ===

attempts_total = Counter(
    "gateway_attempts_total",
    "Total provider attempts by outcome and error kind",
    ["outcome", "error_kind"],
)
"""
Attempts counter.

Labels:
- outcome: success, failure
- error_kind: ErrorKind value for failures, "none" for successes
"""

retries_total = Counter(
    "gateway_retries_total",
    "Total retries scheduled by error kind",
    ["error_kind"],
)
"""
Retries scheduled after a retryable failure.

Alert thresholds:
- WARN: retry rate > 10% of total attempts
- CRITICAL: retry rate > 30% of total attempts
"""

# === Circuit Breaker Metrics ===

circuit_transitions_total = Counter(
    "gateway_circuit_transitions_total",
    "Circuit breaker state transitions by service and target state",
    ["service_id", "to_state"],
)

circuit_rejections_total = Counter(
    "gateway_circuit_rejections_total",
    "Calls rejected without invoking the operation because the circuit is open",
    ["service_id"],
)

circuit_state = Gauge(
    "gateway_circuit_state",
    "Current circuit state per service (0=closed, 1=half_open, 2=open)",
    ["service_id"],
)

# === Cache & Fallback Metrics ===

cache_lookups_total = Counter(
    "gateway_cache_lookups_total",
    "Response cache lookups by result",
    ["result"],
)
"""
Labels:
- result: hit, miss, expired
"""

fallback_attempts_total = Counter(
    "gateway_fallback_attempts_total",
    "Fallback chain candidates tried by position and outcome",
    ["position", "outcome"],
)
"""
Labels:
- position: primary, fallback
- outcome: success, failure
"""

degraded_responses_total = Counter(
    "gateway_degraded_responses_total",
    "Placeholder responses returned after every candidate failed",
    ["shape"],
)

# === Usage & Quota Metrics ===

quota_denials_total = Counter(
    "gateway_quota_denials_total",
    "Pre-flight denials by ceiling",
    ["ceiling"],
)
"""
Labels:
- ceiling: per_request_tokens, daily_tokens, daily_cost, daily_requests, tracked_usage
"""

usage_tokens_total = Counter(
    "gateway_usage_tokens_total",
    "Tokens consumed by provider and model",
    ["provider", "model"],
)

usage_cost_dollars_total = Counter(
    "gateway_usage_cost_dollars_total",
    "Cost in USD by provider and model",
    ["provider", "model"],
)

usage_alerts_total = Counter(
    "gateway_usage_alerts_total",
    "Usage threshold alerts fired by period and threshold",
    ["period", "threshold"],
)

# === Latency ===

operation_latency_seconds = Histogram(
    "gateway_operation_latency_seconds",
    "End-to-end Gateway.execute latency in seconds",
    ["status"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)
"""
Labels:
- status: success, degraded, failed (denials are not timed)

Buckets cover fast cache hits up to long retry/fallback chains.
"""
