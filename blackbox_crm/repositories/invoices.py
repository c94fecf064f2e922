from sqlalchemy import select

from blackbox_crm.models.invoice import Invoice
from blackbox_crm.repositories.base import OwnedRepository


class InvoiceRepository(OwnedRepository[Invoice]):
    model = Invoice

    def serial_taken(self, serial_number: str, *, exclude_id: str | None = None) -> bool:
        stmt = select(Invoice.id).where(
            Invoice.user_id == self.user_id,
            Invoice.serial_number == serial_number,
        )
        if exclude_id:
            stmt = stmt.where(Invoice.id != exclude_id)
        return self.db.execute(stmt).first() is not None

    def first_status_by_deal(self, deal_ids: list[str]) -> dict[str, str]:
        """Status of the earliest invoice raised against each deal."""
        if not deal_ids:
            return {}
        rows = self.db.execute(
            select(Invoice.sales_pipeline_id, Invoice.status)
            .where(
                Invoice.user_id == self.user_id,
                Invoice.sales_pipeline_id.in_(deal_ids),
            )
            .order_by(Invoice.created_at.asc(), Invoice.id.asc())
        ).all()
        out: dict[str, str] = {}
        for deal_id, status in rows:
            out.setdefault(deal_id, status)
        return out
