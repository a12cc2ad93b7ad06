"""
Usage/quota tracker.

Records every attempted provider call, enforces ceilings before execution
and derives quota snapshots, cost breakdowns and statistics from the
in-memory ledger.

Pre-flight check order (``can_execute`` / ``reserve``):
    1. Per-request token ceiling - a single oversized call is always denied
    2. Daily ceilings (tokens, cost, requests) - projected usage including
       outstanding reservations must stay within the limit
    3. Monthly ceiling - logged as a warning above 90%, never blocks

Admission is a reservation: check and hold happen under one lock, so two
callers racing for the last unit of daily budget cannot both be admitted.
``commit`` later replaces the hold with the actual usage record.
"""

import csv
import io
import json
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import structlog

from execution_gateway.errors.exceptions import UsageLimitExceeded
from execution_gateway.models.enums import QuotaPeriod
from execution_gateway.models.policy_models import ModelPricing, UsageLimits
from execution_gateway.models.usage_models import (
    CostBreakdown,
    ExecutionDecision,
    Reservation,
    UsageAmounts,
    UsageGroup,
    UsageQuota,
    UsageRecord,
    UsageStats,
    UsageTotals,
    utc_now,
)
from execution_gateway.monitoring.metrics import (
    quota_denials_total,
    usage_cost_dollars_total,
    usage_tokens_total,
)
from execution_gateway.usage.alerts import UsageAlertManager
from execution_gateway.usage.pricing import PricingTable

logger = structlog.get_logger(__name__)

MONTHLY_WARNING_PERCENT = 90.0
EXPORT_COLUMNS = ["timestamp", "provider", "model", "operation", "tokens", "cost", "duration", "success"]
GROUP_BY_FIELDS = ("provider", "model", "day", "hour")


@dataclass
class _Totals:
    tokens: int = 0
    cost: float = 0.0
    requests: int = 0

    def add(self, tokens: int, cost: float, requests: int = 1) -> None:
        self.tokens += tokens
        self.cost += cost
        self.requests += requests


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def period_bounds(period: QuotaPeriod, now: datetime) -> Tuple[datetime, datetime]:
    """Start (inclusive) and end (exclusive) of the UTC window containing ``now``."""
    now = _as_utc(now)
    if period == QuotaPeriod.DAILY:
        start = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
        return start, start + timedelta(days=1)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


class UsageTracker:
    """
    In-memory usage ledger with ceiling enforcement.

    Running totals are kept per UTC day and per UTC month bucket so quota
    checks never rescan the ledger. All mutation happens under one lock;
    every admission touches the current day bucket anyway.

    Attributes:
        pricing: Price table used for cost estimates
        alerts: Threshold alert manager
    """

    def __init__(
        self,
        limits: Optional[UsageLimits] = None,
        pricing: Optional[PricingTable] = None,
        clock: Callable[[], datetime] = utc_now,
        alert_manager: Optional[UsageAlertManager] = None,
    ):
        self._limits = limits or UsageLimits()
        self.pricing = pricing or PricingTable()
        self.alerts = alert_manager or UsageAlertManager()
        self._clock = clock
        self._lock = threading.Lock()
        self._records: List[UsageRecord] = []
        self._daily: Dict[date, _Totals] = {}
        self._monthly: Dict[Tuple[int, int], _Totals] = {}
        self._reservations: Dict[str, Reservation] = {}
        self._version = 0

    # === Limits & pricing ===

    @property
    def limits(self) -> UsageLimits:
        return self._limits

    def get_limits(self) -> UsageLimits:
        return self._limits

    def set_limits(self, limits: UsageLimits) -> None:
        with self._lock:
            self._limits = limits
        logger.info(
            "Usage limits updated",
            daily=limits.daily.model_dump(),
            monthly=limits.monthly.model_dump(),
            per_request=limits.per_request.model_dump(),
        )

    def set_pricing(self, prices: Mapping[str, ModelPricing], replace: bool = False) -> None:
        self.pricing.update(prices, replace=replace)

    def calculate_cost(self, model: str, input_tokens: int, output_tokens: int = 0) -> float:
        return self.pricing.calculate_cost(model, input_tokens, output_tokens)

    # === Admission ===

    def can_execute(self, estimated_tokens: int, model: str) -> ExecutionDecision:
        """
        Check whether a call of ``estimated_tokens`` may run now.

        Does not hold any budget; use ``reserve`` to admit atomically.
        """
        with self._lock:
            return self._check_admission(estimated_tokens, model, self._clock())[0]

    def reserve(self, estimated_tokens: int, model: str) -> ExecutionDecision:
        """
        Check and hold budget for a call in one step.

        Returns:
            Allowed decision carrying a Reservation, or a Denied decision
        """
        with self._lock:
            decision, estimated_cost = self._check_admission(estimated_tokens, model, self._clock())
            if not decision.allowed:
                return decision
            reservation = Reservation(
                model=model,
                estimated_tokens=estimated_tokens,
                estimated_cost=estimated_cost,
                created_at=self._clock(),
            )
            self._reservations[reservation.reservation_id] = reservation
        return ExecutionDecision.allow(reservation)

    def release(self, reservation: Optional[Reservation]) -> None:
        """Drop a hold without recording usage (no attempt was made)."""
        if reservation is None:
            return
        with self._lock:
            self._reservations.pop(reservation.reservation_id, None)

    def commit(self, reservation: Optional[Reservation], record: UsageRecord) -> UsageRecord:
        """
        Replace a hold with the actual usage record.

        The call already happened, so the record is appended even if actual
        usage exceeds the estimate.
        """
        with self._lock:
            if reservation is not None:
                self._reservations.pop(reservation.reservation_id, None)
            self._append(record)
            fired = self._evaluate_alerts()
        self._after_append(record)
        self.alerts.dispatch(fired)
        return record

    def track_usage(self, record: UsageRecord) -> UsageRecord:
        """
        Append a usage record, enforcing the daily ceilings.

        Raises:
            UsageLimitExceeded: Recording would exceed the daily token or cost
                limit (the record is not appended)
        """
        with self._lock:
            now = self._clock()
            quota = self._quota(QuotaPeriod.DAILY, now, include_pending=True)
            if quota.remaining.tokens < record.tokens_used:
                quota_denials_total.labels(ceiling="tracked_usage").inc()
                raise UsageLimitExceeded(
                    ExecutionDecision.deny(
                        "Daily token limit exceeded",
                        f"Wait until {quota.reset_at.isoformat()} for quota reset",
                    )
                )
            if quota.remaining.cost < record.cost:
                quota_denials_total.labels(ceiling="tracked_usage").inc()
                raise UsageLimitExceeded(
                    ExecutionDecision.deny(
                        "Daily cost limit exceeded",
                        "Consider using a more cost-effective model",
                    )
                )
            self._append(record)
            fired = self._evaluate_alerts()
        self._after_append(record)
        self.alerts.dispatch(fired)
        return record

    # === Snapshots ===

    def check_quota(self, period: QuotaPeriod | str) -> UsageQuota:
        """Usage of the current window against its ceilings (holds excluded)."""
        period = QuotaPeriod(period)
        with self._lock:
            return self._quota(period, self._clock(), include_pending=False)

    def get_cost_breakdown(self, period: QuotaPeriod | str) -> List[CostBreakdown]:
        """Current window's cost grouped by provider+model, most expensive first."""
        period = QuotaPeriod(period)
        with self._lock:
            start, _ = period_bounds(period, self._clock())
            records = [r for r in self._records if _as_utc(r.timestamp) >= start]

        groups: Dict[Tuple[str, str], CostBreakdown] = {}
        for record in records:
            key = (record.provider, record.model)
            entry = groups.setdefault(key, CostBreakdown(provider=record.provider, model=record.model))
            entry.total_cost += record.cost
            entry.token_count += record.tokens_used
            entry.request_count += 1
            entry.average_cost_per_request = entry.total_cost / entry.request_count

        return sorted(groups.values(), key=lambda b: b.total_cost, reverse=True)

    def get_usage_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        group_by: Optional[str] = None,
    ) -> UsageStats:
        """
        Totals, optional grouped breakdown and a daily timeline.

        Args:
            start: Range start (defaults to the start of the current month)
            end: Range end, inclusive (defaults to now)
            group_by: One of provider, model, day, hour

        Raises:
            ValueError: Unknown group_by field
        """
        if group_by is not None and group_by not in GROUP_BY_FIELDS:
            raise ValueError(f"group_by must be one of {GROUP_BY_FIELDS}, got {group_by!r}")

        with self._lock:
            now = self._clock()
            start = _as_utc(start) if start else period_bounds(QuotaPeriod.MONTHLY, now)[0]
            end = _as_utc(end) if end else _as_utc(now)
            records = [r for r in self._records if start <= _as_utc(r.timestamp) <= end]

        requests = len(records)
        total = UsageTotals(
            tokens=sum(r.tokens_used for r in records),
            cost=sum(r.cost for r in records),
            requests=requests,
            success_rate=(sum(1 for r in records if r.success) / requests * 100) if requests else 0.0,
            avg_duration_ms=(sum(r.duration_ms for r in records) / requests) if requests else 0.0,
        )
        breakdown = self._group(records, group_by) if group_by else None
        timeline = sorted(self._group(records, "day"), key=lambda g: g.key)
        return UsageStats(start=start, end=end, total=total, breakdown=breakdown, timeline=timeline)

    def records(self) -> List[UsageRecord]:
        with self._lock:
            return list(self._records)

    @property
    def version(self) -> int:
        """Ledger mutation counter (used by the flusher to detect changes)."""
        return self._version

    def ledger_snapshot(self) -> Tuple[int, List[UsageRecord]]:
        with self._lock:
            return self._version, list(self._records)

    def pending_reservations(self) -> List[Reservation]:
        with self._lock:
            return list(self._reservations.values())

    # === Ledger maintenance ===

    def load_history(self, records: Iterable[UsageRecord]) -> int:
        """Replace the ledger with persisted records; returns the count loaded."""
        loaded = list(records)
        with self._lock:
            self._records = loaded
            self._rebuild_totals()
        logger.info("Loaded usage history", records=len(loaded))
        return len(loaded)

    def reset_usage(self, period: Optional[QuotaPeriod | str] = None) -> int:
        """
        Drop ledger records and clear alert suppression.

        Args:
            period: "daily"/"monthly" drops the current window's records,
                "all" drops everything, None only clears alert state

        Returns:
            Number of records removed
        """
        with self._lock:
            before = len(self._records)
            if period == "all":
                self._records = []
            elif period is not None:
                start, _ = period_bounds(QuotaPeriod(period), self._clock())
                self._records = [r for r in self._records if _as_utc(r.timestamp) < start]
            removed = before - len(self._records)
            self._rebuild_totals()
            self._version += 1
            self.alerts.clear()
        logger.info("Usage tracking reset", period=str(period), removed=removed)
        return removed

    def export_usage(self, fmt: str = "json") -> str:
        """
        Export the ledger as JSON (list of records) or CSV rows.

        Raises:
            ValueError: Unsupported format
        """
        records = self.records()
        if fmt == "json":
            return json.dumps([r.model_dump(mode="json") for r in records], indent=2)
        if fmt == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(EXPORT_COLUMNS)
            for r in records:
                writer.writerow([
                    _as_utc(r.timestamp).isoformat(),
                    r.provider,
                    r.model,
                    r.operation,
                    r.tokens_used,
                    r.cost,
                    r.duration_ms,
                    str(r.success).lower(),
                ])
            return buffer.getvalue()
        raise ValueError(f"Unsupported export format: {fmt!r} (expected 'json' or 'csv')")

    # === Internals (callers hold self._lock) ===

    def _check_admission(
        self, estimated_tokens: int, model: str, now: datetime
    ) -> Tuple[ExecutionDecision, float]:
        limits = self._limits
        if estimated_tokens > limits.per_request.tokens:
            quota_denials_total.labels(ceiling="per_request_tokens").inc()
            return (
                ExecutionDecision.deny(
                    f"Request exceeds token limit ({estimated_tokens} > {limits.per_request.tokens})",
                    "Consider breaking down the request into smaller parts",
                ),
                0.0,
            )

        estimated_cost = self.pricing.calculate_cost(model, estimated_tokens, 0)
        daily = self._quota(QuotaPeriod.DAILY, now, include_pending=True)

        if daily.used.tokens + estimated_tokens > limits.daily.tokens:
            quota_denials_total.labels(ceiling="daily_tokens").inc()
            return (
                ExecutionDecision.deny(
                    "Daily token limit would be exceeded",
                    f"Wait until {daily.reset_at.isoformat()} for quota reset",
                ),
                estimated_cost,
            )
        if daily.used.cost + estimated_cost > limits.daily.cost:
            quota_denials_total.labels(ceiling="daily_cost").inc()
            return (
                ExecutionDecision.deny(
                    "Daily cost limit would be exceeded",
                    "Consider using a more cost-effective model",
                ),
                estimated_cost,
            )
        if daily.used.requests + 1 > limits.daily.requests:
            quota_denials_total.labels(ceiling="daily_requests").inc()
            return (
                ExecutionDecision.deny(
                    "Daily request limit would be exceeded",
                    f"Wait until {daily.reset_at.isoformat()} for quota reset",
                ),
                estimated_cost,
            )

        monthly = self._quota(QuotaPeriod.MONTHLY, now, include_pending=True)
        if monthly.percent_used > MONTHLY_WARNING_PERCENT:
            logger.warning("Monthly usage above 90%", percent_used=round(monthly.percent_used, 2))

        return ExecutionDecision.allow(), estimated_cost

    def _quota(self, period: QuotaPeriod, now: datetime, include_pending: bool) -> UsageQuota:
        limits = self._limits.for_period(period)
        _, reset_at = period_bounds(period, now)
        bucket = self._bucket(period, now)

        used = _Totals(bucket.tokens, bucket.cost, bucket.requests) if bucket else _Totals()
        if include_pending:
            for reservation in self._reservations.values():
                used.add(reservation.estimated_tokens, reservation.estimated_cost)

        percent_used = max(
            used.tokens / limits.tokens,
            used.cost / limits.cost,
            used.requests / limits.requests,
        ) * 100
        return UsageQuota(
            period=period,
            used=UsageAmounts(tokens=used.tokens, cost=round(used.cost, 6), requests=used.requests),
            remaining=UsageAmounts(
                tokens=max(0, limits.tokens - used.tokens),
                cost=max(0.0, round(limits.cost - used.cost, 6)),
                requests=max(0, limits.requests - used.requests),
            ),
            percent_used=percent_used,
            reset_at=reset_at,
        )

    def _bucket(self, period: QuotaPeriod, now: datetime) -> Optional[_Totals]:
        now = _as_utc(now)
        if period == QuotaPeriod.DAILY:
            return self._daily.get(now.date())
        return self._monthly.get((now.year, now.month))

    def _append(self, record: UsageRecord) -> None:
        self._records.append(record)
        self._add_to_buckets(record)
        self._version += 1

    def _add_to_buckets(self, record: UsageRecord) -> None:
        moment = _as_utc(record.timestamp)
        self._daily.setdefault(moment.date(), _Totals()).add(record.tokens_used, record.cost)
        self._monthly.setdefault((moment.year, moment.month), _Totals()).add(record.tokens_used, record.cost)

    def _rebuild_totals(self) -> None:
        self._daily = {}
        self._monthly = {}
        for record in self._records:
            self._add_to_buckets(record)

    def _evaluate_alerts(self) -> list:
        now = self._clock()
        quotas = [
            self._quota(QuotaPeriod.DAILY, now, include_pending=False),
            self._quota(QuotaPeriod.MONTHLY, now, include_pending=False),
        ]
        return self.alerts.evaluate(quotas, now)

    def _after_append(self, record: UsageRecord) -> None:
        usage_tokens_total.labels(provider=record.provider, model=record.model).inc(record.tokens_used)
        usage_cost_dollars_total.labels(provider=record.provider, model=record.model).inc(record.cost)
        logger.info(
            "AI usage tracked",
            provider=record.provider,
            model=record.model,
            operation=record.operation,
            tokens=record.tokens_used,
            cost=record.cost,
            success=record.success,
        )

    @staticmethod
    def _group(records: List[UsageRecord], group_by: str) -> List[UsageGroup]:
        groups: Dict[str, UsageGroup] = {}
        for record in records:
            moment = _as_utc(record.timestamp)
            if group_by == "provider":
                key = record.provider
            elif group_by == "model":
                key = record.model
            elif group_by == "day":
                key = moment.date().isoformat()
            else:
                key = f"{moment.date().isoformat()} {moment.hour:02d}:00"
            group = groups.setdefault(key, UsageGroup(key=key))
            group.tokens += record.tokens_used
            group.cost += record.cost
            group.requests += 1
        return list(groups.values())
