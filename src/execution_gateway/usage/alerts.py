"""
Usage threshold alerting.

Fires at 50/75/90/100% of daily or monthly usage. Each (period, threshold)
pair fires at most once within the suppression window (24 hours) so
sustained overage surfaces without an alert storm. Delivery (email,
webhook, pager) belongs to the surrounding application, which registers
sinks; the gateway itself emits a structured log event and a metric.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, Sequence

import structlog

from execution_gateway.models.usage_models import UsageAlert, UsageQuota
from execution_gateway.monitoring.metrics import usage_alerts_total

logger = structlog.get_logger(__name__)

AlertSink = Callable[[UsageAlert], None]

DEFAULT_THRESHOLDS = (50, 75, 90, 100)
DEFAULT_SUPPRESSION_WINDOW = timedelta(hours=24)


class UsageAlertManager:
    """
    Threshold evaluation with per-key suppression.

    ``evaluate`` is called by the tracker while it holds its ledger lock;
    ``dispatch`` is called after the lock is released so slow sinks never
    block admission.
    """

    def __init__(
        self,
        thresholds: Sequence[int] = DEFAULT_THRESHOLDS,
        suppression_window: timedelta = DEFAULT_SUPPRESSION_WINDOW,
        sinks: Iterable[AlertSink] = (),
    ):
        self.thresholds = tuple(sorted(thresholds))
        self.suppression_window = suppression_window
        self._sinks: list[AlertSink] = list(sinks)
        self._last_fired: Dict[str, datetime] = {}

    def add_sink(self, sink: AlertSink) -> None:
        self._sinks.append(sink)

    def evaluate(self, quotas: Iterable[UsageQuota], now: datetime) -> list[UsageAlert]:
        """Alerts that should fire now (suppression state is updated)."""
        fired = []
        for quota in quotas:
            for threshold in self.thresholds:
                if quota.percent_used < threshold:
                    continue
                key = f"{quota.period.value}-{threshold}"
                last = self._last_fired.get(key)
                if last is not None and now - last < self.suppression_window:
                    continue
                self._last_fired[key] = now
                fired.append(
                    UsageAlert(
                        period=quota.period,
                        threshold=threshold,
                        percent_used=round(quota.percent_used, 2),
                        message=f"{quota.period.value.capitalize()} usage at {threshold}% of limit",
                        triggered_at=now,
                    )
                )
        return fired

    def dispatch(self, alerts: Iterable[UsageAlert]) -> None:
        """Log, count and hand alerts to registered sinks."""
        for alert in alerts:
            usage_alerts_total.labels(period=alert.period.value, threshold=str(alert.threshold)).inc()
            logger.warning(
                "usage_alert",
                alert_key=alert.alert_key,
                alert_message=alert.message,
                percent_used=alert.percent_used,
            )
            for sink in self._sinks:
                try:
                    sink(alert)
                except Exception:
                    logger.error("Alert sink failed", alert_key=alert.alert_key, exc_info=True)

    def clear(self) -> None:
        self._last_fired.clear()
