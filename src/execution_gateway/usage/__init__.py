"""
Usage accounting, cost calculation and quota enforcement.

Main Components:
    - UsageTracker: Ledger with reservations and daily/monthly/per-request ceilings
    - PricingTable: Per-model USD rates with a default for unknown models
    - UsageAlertManager: 50/75/90/100% threshold alerts with 24h suppression
"""

from execution_gateway.usage.alerts import DEFAULT_THRESHOLDS, AlertSink, UsageAlertManager
from execution_gateway.usage.pricing import PricingTable
from execution_gateway.usage.tracker import UsageTracker, period_bounds

__all__ = [
    "UsageTracker",
    "PricingTable",
    "UsageAlertManager",
    "AlertSink",
    "DEFAULT_THRESHOLDS",
    "period_bounds",
]
