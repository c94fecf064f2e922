from datetime import datetime
from typing import Sequence

from sqlalchemy import update

from blackbox_crm.models.invoice import Invoice
from blackbox_crm.models.sales_pipeline import SalesPipeline
from blackbox_crm.repositories.base import OwnedRepository
from blackbox_crm.schemas.pipeline import OPEN_DEAL_STATUSES


class PipelineRepository(OwnedRepository[SalesPipeline]):
    model = SalesPipeline

    def list_created_between(self, start: datetime, end: datetime) -> Sequence[SalesPipeline]:
        """Deals created in [start, end], oldest first."""
        return self.db.execute(
            self._scoped()
            .where(SalesPipeline.created_at >= start, SalesPipeline.created_at <= end)
            .order_by(SalesPipeline.created_at.asc())
        ).scalars().all()

    def list_open(self, *, limit: int) -> Sequence[SalesPipeline]:
        return self.db.execute(
            self._scoped()
            .where(SalesPipeline.status.in_(OPEN_DEAL_STATUSES))
            .order_by(SalesPipeline.created_at.desc())
            .limit(limit)
        ).scalars().all()

    def delete(self, record: SalesPipeline) -> None:
        self.db.execute(
            update(Invoice)
            .where(Invoice.user_id == self.user_id, Invoice.sales_pipeline_id == record.id)
            .values(sales_pipeline_id=None)
        )
        super().delete(record)
