import logging
from collections.abc import Iterator

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from blackbox_crm.core.observability import log_event
from blackbox_crm.db.session import SessionLocal


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit_or_500(db: Session, *, action: str, conflict_detail: str | None = None) -> None:
    """Commits the request's unit of work; on failure the prior state is kept.

    With ``conflict_detail`` set, a unique-constraint violation is reported as
    409 with that message instead of 500.
    """
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if conflict_detail is None:
            log_event("db_commit_failed", level=logging.ERROR, action=action, error=str(exc))
            raise HTTPException(status_code=500, detail=f"Could not {action}") from exc
        log_event("db_commit_conflict", level=logging.WARNING, action=action)
        raise HTTPException(status_code=409, detail=conflict_detail) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        log_event("db_commit_failed", level=logging.ERROR, action=action, error=str(exc))
        raise HTTPException(status_code=500, detail=f"Could not {action}") from exc
