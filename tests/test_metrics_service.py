from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from blackbox_crm.services.metrics_service import (
    DealRecord,
    compute_growth_stats,
    growth_pct,
    normalize_granularity,
    period_windows,
    snapshot_for_window,
    span_start,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _deal(
    created_at: datetime,
    *,
    status: str = "closed_won",
    amount: str = "5000",
    deal_id: str = "deal",
) -> DealRecord:
    return DealRecord(id=deal_id, amount=Decimal(amount), status=status, created_at=created_at)


def test_closed_won_deal_created_now_counts_in_current_day():
    stats = compute_growth_stats([_deal(NOW)], "day", NOW)

    assert stats.current.total_revenue == Decimal("5000.00")
    assert stats.current.deals_closed == 1
    assert stats.current.deals_created == 1
    assert stats.current.conversion_rate == 100
    assert stats.previous.deals_created == 0


def test_revenue_growth_is_zero_without_previous_revenue():
    deals = [
        _deal(NOW - timedelta(hours=1), amount="5000", deal_id="a"),
        _deal(NOW - timedelta(hours=30), status="contacted", amount="900", deal_id="b"),
    ]
    stats = compute_growth_stats(deals, "daily", NOW)

    assert stats.previous.total_revenue == Decimal("0.00")
    assert stats.previous.deals_created == 1
    assert stats.current.total_revenue == Decimal("5000.00")
    assert stats.growth.revenue_pct == 0
    assert stats.growth.deals_pct == 0
    assert stats.growth.conversion_pct == 0


def test_growth_compares_current_against_previous_window():
    deals = [
        _deal(NOW - timedelta(hours=2), amount="3000", deal_id="c1"),
        _deal(NOW - timedelta(hours=3), amount="3000", deal_id="c2"),
        _deal(NOW - timedelta(hours=30), amount="4000", deal_id="p1"),
        _deal(NOW - timedelta(hours=31), status="closed_lost", amount="800", deal_id="p2"),
    ]
    stats = compute_growth_stats(deals, "day", NOW)

    assert stats.current.total_revenue == Decimal("6000.00")
    assert stats.previous.total_revenue == Decimal("4000.00")
    assert stats.current.conversion_rate == 100
    assert stats.previous.conversion_rate == 50
    assert stats.growth.revenue_pct == 50
    assert stats.growth.deals_pct == 100
    assert stats.growth.conversion_pct == 100


def test_weekly_windows_are_adjacent():
    current, previous = period_windows(NOW, "weekly")

    assert previous.end == current.start
    assert current.start == NOW - timedelta(weeks=1)
    assert previous.start == NOW - timedelta(weeks=2)
    assert current.end == NOW


def test_window_boundaries_belong_to_one_window_only():
    current, previous = period_windows(NOW, "day")
    deals = [
        _deal(current.start, deal_id="at-current-start"),
        _deal(previous.start, deal_id="at-previous-start"),
        _deal(NOW, deal_id="at-now"),
        _deal(NOW + timedelta(seconds=1), deal_id="future"),
        _deal(previous.start - timedelta(seconds=1), deal_id="too-old"),
    ]

    assert snapshot_for_window(deals, current).deals_created == 2
    assert snapshot_for_window(deals, previous).deals_created == 1


def test_conversion_rate_is_rounded_integer_percentage():
    deals = [_deal(NOW - timedelta(minutes=i), status="contacted", deal_id=f"open-{i}") for i in range(7)]
    deals.append(_deal(NOW - timedelta(minutes=30), deal_id="won"))

    stats = compute_growth_stats(deals, "day", NOW)

    # 1 of 8 is 12.5%, rounded half away from zero.
    assert stats.current.conversion_rate == 13
    assert isinstance(stats.current.conversion_rate, int)
    assert 0 <= stats.current.conversion_rate <= 100


def test_conversion_rate_is_zero_without_deals():
    stats = compute_growth_stats([], "month", NOW)

    assert stats.current.conversion_rate == 0
    assert stats.current.deals_created == 0
    assert stats.current.total_revenue == Decimal("0.00")
    assert stats.growth.revenue_pct == 0


def test_growth_pct_rounds_half_away_from_zero():
    assert growth_pct(9, 8) == 13
    assert growth_pct(7, 8) == -13
    assert growth_pct(Decimal("150"), Decimal("100")) == 50
    assert growth_pct(0, 4) == -100
    assert growth_pct(10, 0) == 0


def test_month_span_clamps_to_last_day_of_month():
    end_of_march = datetime(2026, 3, 31, 9, 30, tzinfo=timezone.utc)

    assert span_start(end_of_march, "month") == datetime(2026, 2, 28, 9, 30, tzinfo=timezone.utc)
    assert span_start(end_of_march, "monthly", 2) == datetime(2026, 1, 31, 9, 30, tzinfo=timezone.utc)
    assert span_start(datetime(2024, 3, 31, tzinfo=timezone.utc), "month") == datetime(
        2024, 2, 29, tzinfo=timezone.utc
    )
    assert span_start(datetime(2026, 1, 15, tzinfo=timezone.utc), "month") == datetime(
        2025, 12, 15, tzinfo=timezone.utc
    )


def test_monthly_windows_use_calendar_months():
    current, previous = period_windows(NOW, "monthly")

    assert current.start == datetime(2026, 9, 19, 12, 0, tzinfo=timezone.utc)
    assert previous.start == datetime(2026, 8, 19, 12, 0, tzinfo=timezone.utc)
    assert previous.end == current.start


def test_naive_created_at_is_treated_as_utc():
    naive = datetime(2026, 10, 19, 11, 0)
    stats = compute_growth_stats([_deal(naive)], "day", NOW)

    assert stats.current.deals_closed == 1


def test_closed_won_status_spellings_are_recognized():
    deals = [
        _deal(NOW - timedelta(hours=1), status="Closed Won", deal_id="a"),
        _deal(NOW - timedelta(hours=2), status="closed-won", deal_id="b"),
    ]
    stats = compute_growth_stats(deals, "day", NOW)

    assert stats.current.deals_closed == 2


def test_identical_inputs_give_identical_output():
    deals = [
        _deal(NOW - timedelta(days=3), deal_id="a"),
        _deal(NOW - timedelta(days=9), status="qualified", deal_id="b"),
    ]

    assert compute_growth_stats(deals, "week", NOW) == compute_growth_stats(list(deals), "week", NOW)


def test_granularity_aliases_and_rejection():
    assert normalize_granularity("Daily") == "day"
    assert normalize_granularity("weekly") == "week"
    assert normalize_granularity("month") == "month"

    with pytest.raises(ValueError):
        normalize_granularity("yearly")
    with pytest.raises(ValueError):
        compute_growth_stats([], "quarter", NOW)
