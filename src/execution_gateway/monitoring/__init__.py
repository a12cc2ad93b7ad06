"""Monitoring and metrics instrumentation for the execution gateway.

Exports custom Prometheus metrics for operational monitoring and alerting.
"""

from execution_gateway.monitoring.metrics import (
    attempts_total,
    cache_lookups_total,
    circuit_rejections_total,
    circuit_state,
    circuit_transitions_total,
    degraded_responses_total,
    fallback_attempts_total,
    operation_latency_seconds,
    quota_denials_total,
    retries_total,
    usage_alerts_total,
    usage_cost_dollars_total,
    usage_tokens_total,
)

__all__ = [
    "attempts_total",
    "retries_total",
    "circuit_transitions_total",
    "circuit_rejections_total",
    "circuit_state",
    "cache_lookups_total",
    "fallback_attempts_total",
    "degraded_responses_total",
    "quota_denials_total",
    "usage_tokens_total",
    "usage_cost_dollars_total",
    "usage_alerts_total",
    "operation_latency_seconds",
]
