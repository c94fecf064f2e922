from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from blackbox_crm.core.api_docs import error_responses
from blackbox_crm.core.deps import get_db
from blackbox_crm.core.security_current import get_current_user
from blackbox_crm.models.user import User
from blackbox_crm.repositories.messages import MessageRepository
from blackbox_crm.repositories.pipelines import PipelineRepository
from blackbox_crm.routers.messages import message_out
from blackbox_crm.routers.pipelines import pipeline_outs
from blackbox_crm.schemas.dashboard import (
    DashboardStatsOut,
    DashboardSummaryOut,
    GrowthOut,
    MetricSnapshotOut,
)
from blackbox_crm.services.metrics_service import GrowthStats, MetricSnapshot, get_dashboard_stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

SUMMARY_DEALS_LIMIT = 5
SUMMARY_MESSAGES_LIMIT = 5


def _snapshot_out(snapshot: MetricSnapshot) -> MetricSnapshotOut:
    return MetricSnapshotOut(
        window_start=snapshot.window.start,
        window_end=snapshot.window.end,
        total_revenue=float(snapshot.total_revenue),
        deals_closed=snapshot.deals_closed,
        deals_created=snapshot.deals_created,
        conversion_rate=snapshot.conversion_rate,
    )


def _stats_out(stats: GrowthStats) -> DashboardStatsOut:
    return DashboardStatsOut(
        granularity=stats.granularity,
        now=stats.now,
        current=_snapshot_out(stats.current),
        previous=_snapshot_out(stats.previous),
        growth=GrowthOut(
            revenue_pct=stats.growth.revenue_pct,
            deals_pct=stats.growth.deals_pct,
            conversion_pct=stats.growth.conversion_pct,
        ),
    )


def _load_stats(db: Session, *, user_id: str, granularity: str) -> DashboardStatsOut:
    try:
        stats = get_dashboard_stats(db, user_id=user_id, granularity=granularity)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _stats_out(stats)


@router.get(
    "/stats",
    response_model=DashboardStatsOut,
    summary="Period-over-period sales metrics",
    description=(
        "Compares the current window `[now - span, now]` with the previous window "
        "`[now - 2*span, now - span)`. Granularity: daily, weekly or monthly."
    ),
    responses=error_responses(401, 422, 500),
)
def dashboard_stats(
    granularity: str = Query(default="monthly"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _load_stats(db, user_id=user.id, granularity=granularity)


@router.get(
    "/summary",
    response_model=DashboardSummaryOut,
    summary="Dashboard summary",
    description="Growth stats plus the open deals and the latest messages.",
    responses=error_responses(401, 422, 500),
)
def dashboard_summary(
    granularity: str = Query(default="monthly"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    stats = _load_stats(db, user_id=user.id, granularity=granularity)
    open_deals = PipelineRepository(db, user_id=user.id).list_open(limit=SUMMARY_DEALS_LIMIT)
    messages = MessageRepository(db, user_id=user.id).list(limit=SUMMARY_MESSAGES_LIMIT)
    return DashboardSummaryOut(
        stats=stats,
        deals_in_progress=pipeline_outs(db, user_id=user.id, deals=open_deals),
        recent_messages=[message_out(message) for message in messages],
    )
