"""Owner-scoped data access.

Every table in the CRM belongs to exactly one user. Repositories bind a
session to that user so callers cannot forget the ownership filter.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Generic, Sequence, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from blackbox_crm.db.base import Base

ModelT = TypeVar("ModelT", bound=Base)


class OwnedRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session, *, user_id: str):
        self.db = db
        self.user_id = user_id

    def _scoped(self) -> Select:
        return select(self.model).where(self.model.user_id == self.user_id)

    def _apply_filters(self, stmt: Select, **filters: Any) -> Select:
        for name, value in filters.items():
            if value is not None:
                stmt = stmt.where(getattr(self.model, name) == value)
        return stmt

    def count(self, **filters: Any) -> int:
        stmt = select(func.count(self.model.id)).where(self.model.user_id == self.user_id)
        stmt = self._apply_filters(stmt, **filters)
        return int(self.db.execute(stmt).scalar_one())

    def list(
        self,
        *,
        offset: int = 0,
        limit: int | None = None,
        order_by: Any = None,
        **filters: Any,
    ) -> Sequence[ModelT]:
        stmt = self._apply_filters(self._scoped(), **filters)
        stmt = stmt.order_by(order_by if order_by is not None else self.model.created_at.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.db.execute(stmt).scalars().all()

    def get(self, record_id: str) -> ModelT | None:
        return self.db.execute(
            self._scoped().where(self.model.id == record_id)
        ).scalar_one_or_none()

    def get_many(self, record_ids: list[str]) -> dict[str, ModelT]:
        unique_ids = [record_id for record_id in dict.fromkeys(record_ids) if record_id]
        if not unique_ids:
            return {}
        rows = self.db.execute(
            self._scoped().where(self.model.id.in_(unique_ids))
        ).scalars().all()
        return {row.id: row for row in rows}

    def create(self, **values: Any) -> ModelT:
        if hasattr(self.model, "created_at"):
            values.setdefault("created_at", datetime.now(timezone.utc))
        record = self.model(id=str(uuid.uuid4()), user_id=self.user_id, **values)
        self.db.add(record)
        self.db.flush()
        return record

    def update(self, record: ModelT, **values: Any) -> ModelT:
        for name, value in values.items():
            setattr(record, name, value)
        self.db.flush()
        return record

    def delete(self, record: ModelT) -> None:
        self.db.delete(record)
        self.db.flush()
