from typing import Sequence

from sqlalchemy import func, or_, select, update

from blackbox_crm.models.contact import Contact
from blackbox_crm.models.invoice import Invoice
from blackbox_crm.models.sales_pipeline import SalesPipeline
from blackbox_crm.repositories.base import OwnedRepository


class ContactRepository(OwnedRepository[Contact]):
    model = Contact

    def _search_filter(self, q: str):
        like_q = f"%{q.lower()}%"
        return or_(
            func.lower(Contact.name).like(like_q),
            func.lower(func.coalesce(Contact.company, "")).like(like_q),
            func.lower(func.coalesce(Contact.email, "")).like(like_q),
            func.lower(func.coalesce(Contact.phone, "")).like(like_q),
        )

    def search(self, q: str | None, *, offset: int, limit: int) -> tuple[int, Sequence[Contact]]:
        total_stmt = select(func.count(Contact.id)).where(Contact.user_id == self.user_id)
        data_stmt = self._scoped()
        if q:
            data_stmt = data_stmt.where(self._search_filter(q))
            total_stmt = total_stmt.where(self._search_filter(q))

        total = int(self.db.execute(total_stmt).scalar_one())
        rows = self.db.execute(
            data_stmt.order_by(Contact.created_at.desc(), Contact.id.asc()).offset(offset).limit(limit)
        ).scalars().all()
        return total, rows

    def delete(self, record: Contact) -> None:
        # Deals and invoices outlive the contact; only the link goes away.
        for model in (SalesPipeline, Invoice):
            self.db.execute(
                update(model)
                .where(model.user_id == self.user_id, model.contact_id == record.id)
                .values(contact_id=None)
            )
        super().delete(record)
