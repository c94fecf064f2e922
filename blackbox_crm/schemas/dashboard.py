from datetime import datetime

from pydantic import BaseModel

from blackbox_crm.schemas.message import MessageOut
from blackbox_crm.schemas.pipeline import PipelineOut


class MetricSnapshotOut(BaseModel):
    window_start: datetime
    window_end: datetime
    total_revenue: float
    deals_closed: int
    deals_created: int
    conversion_rate: int


class GrowthOut(BaseModel):
    revenue_pct: int
    deals_pct: int
    conversion_pct: int


class DashboardStatsOut(BaseModel):
    granularity: str
    now: datetime
    current: MetricSnapshotOut
    previous: MetricSnapshotOut
    growth: GrowthOut


class DashboardSummaryOut(BaseModel):
    stats: DashboardStatsOut
    deals_in_progress: list[PipelineOut]
    recent_messages: list[MessageOut]
