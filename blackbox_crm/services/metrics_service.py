"""Period-over-period sales metrics for the dashboard.

``compute_growth_stats`` is a pure function of the deals it is given and the
caller-supplied ``now``. ``get_dashboard_stats`` is the database-facing
wrapper that loads the owner's deals and delegates to it.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy.orm import Session

from blackbox_crm.core.money import ZERO_MONEY, round_half_away, to_money
from blackbox_crm.repositories.pipelines import PipelineRepository
from blackbox_crm.schemas.pipeline import STATUS_CLOSED_WON

GRANULARITY_DAY = "day"
GRANULARITY_WEEK = "week"
GRANULARITY_MONTH = "month"

_GRANULARITY_ALIASES = {
    "day": GRANULARITY_DAY,
    "daily": GRANULARITY_DAY,
    "week": GRANULARITY_WEEK,
    "weekly": GRANULARITY_WEEK,
    "month": GRANULARITY_MONTH,
    "monthly": GRANULARITY_MONTH,
}


@dataclass(frozen=True)
class DealRecord:
    id: str
    amount: Decimal
    status: str
    created_at: datetime
    contact_id: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> "DealRecord":
        return cls(
            id=str(row.id),
            amount=_to_decimal(row.amount),
            status=row.status,
            created_at=_as_utc(row.created_at),
            contact_id=getattr(row, "contact_id", None),
        )


@dataclass(frozen=True)
class PeriodWindow:
    start: datetime
    end: datetime
    end_inclusive: bool = True

    def contains(self, instant: datetime) -> bool:
        if instant < self.start:
            return False
        if self.end_inclusive:
            return instant <= self.end
        return instant < self.end


@dataclass(frozen=True)
class MetricSnapshot:
    window: PeriodWindow
    total_revenue: Decimal
    deals_closed: int
    deals_created: int
    conversion_rate: int


@dataclass(frozen=True)
class Growth:
    revenue_pct: int
    deals_pct: int
    conversion_pct: int


@dataclass(frozen=True)
class GrowthStats:
    granularity: str
    now: datetime
    current: MetricSnapshot
    previous: MetricSnapshot
    growth: Growth


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO_MONEY
    return Decimal(str(value))


def _is_closed_won(status: str | None) -> bool:
    normalized = (status or "").strip().lower().replace(" ", "_").replace("-", "_")
    return normalized == STATUS_CLOSED_WON


def normalize_granularity(value: str) -> str:
    normalized = _GRANULARITY_ALIASES.get((value or "").strip().lower())
    if not normalized:
        allowed = ", ".join(sorted(_GRANULARITY_ALIASES))
        raise ValueError(f"Unknown granularity '{value}'. Allowed: {allowed}")
    return normalized


def _shift_months(instant: datetime, months: int) -> datetime:
    month_index = instant.year * 12 + (instant.month - 1) - months
    year, month_zero = divmod(month_index, 12)
    month = month_zero + 1
    day = min(instant.day, calendar.monthrange(year, month)[1])
    return instant.replace(year=year, month=month, day=day)


def span_start(now: datetime, granularity: str, periods: int = 1) -> datetime:
    """The instant ``periods`` spans before ``now``."""
    unit = normalize_granularity(granularity)
    if unit == GRANULARITY_DAY:
        return now - timedelta(days=periods)
    if unit == GRANULARITY_WEEK:
        return now - timedelta(weeks=periods)
    return _shift_months(now, periods)


def period_windows(now: datetime, granularity: str) -> tuple[PeriodWindow, PeriodWindow]:
    """Current window [now - span, now] and previous window [now - 2*span, now - span)."""
    now = _as_utc(now)
    current_start = span_start(now, granularity, 1)
    previous_start = span_start(now, granularity, 2)
    current = PeriodWindow(start=current_start, end=now, end_inclusive=True)
    previous = PeriodWindow(start=previous_start, end=current_start, end_inclusive=False)
    return current, previous


def snapshot_for_window(deals: Iterable[DealRecord], window: PeriodWindow) -> MetricSnapshot:
    total_revenue = ZERO_MONEY
    deals_closed = 0
    deals_created = 0
    for deal in deals:
        if not window.contains(_as_utc(deal.created_at)):
            continue
        deals_created += 1
        if _is_closed_won(deal.status):
            deals_closed += 1
            total_revenue += _to_decimal(deal.amount)

    conversion_rate = 0
    if deals_created > 0:
        conversion_rate = round_half_away(Decimal(100 * deals_closed) / Decimal(deals_created))

    return MetricSnapshot(
        window=window,
        total_revenue=to_money(total_revenue),
        deals_closed=deals_closed,
        deals_created=deals_created,
        conversion_rate=conversion_rate,
    )


def growth_pct(current: Decimal | int, previous: Decimal | int) -> int:
    # No baseline means no growth signal, even when current is positive.
    previous_value = _to_decimal(previous)
    if previous_value <= 0:
        return 0
    change = _to_decimal(current) - previous_value
    return round_half_away(Decimal(100) * change / previous_value)


def compute_growth_stats(
    deals: Iterable[DealRecord],
    granularity: str,
    now: datetime,
) -> GrowthStats:
    unit = normalize_granularity(granularity)
    now = _as_utc(now)
    deal_list = list(deals)
    current_window, previous_window = period_windows(now, unit)

    current = snapshot_for_window(deal_list, current_window)
    previous = snapshot_for_window(deal_list, previous_window)

    return GrowthStats(
        granularity=unit,
        now=now,
        current=current,
        previous=previous,
        growth=Growth(
            revenue_pct=growth_pct(current.total_revenue, previous.total_revenue),
            deals_pct=growth_pct(current.deals_closed, previous.deals_closed),
            conversion_pct=growth_pct(current.conversion_rate, previous.conversion_rate),
        ),
    )


def get_dashboard_stats(
    db: Session,
    *,
    user_id: str,
    granularity: str,
    now: datetime | None = None,
) -> GrowthStats:
    reference = _as_utc(now or datetime.now(timezone.utc))
    _, previous_window = period_windows(reference, granularity)
    rows = PipelineRepository(db, user_id=user_id).list_created_between(
        previous_window.start,
        reference,
    )
    return compute_growth_stats(
        [DealRecord.from_row(row) for row in rows],
        granularity,
        reference,
    )
