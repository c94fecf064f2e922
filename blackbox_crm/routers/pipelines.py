from collections.abc import Sequence

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from blackbox_crm.core.api_docs import error_responses
from blackbox_crm.core.deps import commit_or_500, get_db
from blackbox_crm.core.id_utils import generate_deal_serial
from blackbox_crm.core.money import ZERO_MONEY, to_money
from blackbox_crm.core.security_current import get_current_user
from blackbox_crm.models.sales_pipeline import SalesPipeline
from blackbox_crm.models.user import User
from blackbox_crm.repositories.contacts import ContactRepository
from blackbox_crm.repositories.invoices import InvoiceRepository
from blackbox_crm.repositories.pipelines import PipelineRepository
from blackbox_crm.routers.contacts import contact_summary_out
from blackbox_crm.schemas.common import PaginationMeta
from blackbox_crm.schemas.pipeline import (
    CLOSED_DEAL_STATUSES,
    DEAL_STATUSES,
    PipelineBoardColumnOut,
    PipelineBoardOut,
    PipelineCreateIn,
    PipelineCreateOut,
    PipelineListOut,
    PipelineOut,
    PipelineUpdateIn,
    normalize_deal_status,
)

router = APIRouter(prefix="/pipelines", tags=["pipelines"])


def pipeline_outs(db: Session, *, user_id: str, deals: Sequence[SalesPipeline]) -> list[PipelineOut]:
    """Deals with their contact summary and the status of their first invoice."""
    contacts = ContactRepository(db, user_id=user_id).get_many(
        [deal.contact_id for deal in deals if deal.contact_id]
    )
    invoice_statuses = InvoiceRepository(db, user_id=user_id).first_status_by_deal(
        [deal.id for deal in deals]
    )
    return [
        PipelineOut(
            id=deal.id,
            title=deal.title,
            description=deal.description,
            notes=deal.notes,
            contact_id=deal.contact_id,
            contact=contact_summary_out(contacts.get(deal.contact_id)) if deal.contact_id else None,
            status=deal.status,
            amount=float(to_money(deal.amount or 0)),
            invoice_status=invoice_statuses.get(deal.id),
            created_at=deal.created_at,
            updated_at=deal.updated_at,
        )
        for deal in deals
    ]


def deal_or_404(repo: PipelineRepository, deal_id: str) -> SalesPipeline:
    deal = repo.get(deal_id)
    if not deal:
        raise HTTPException(status_code=404, detail="Deal not found")
    return deal


def _ensure_contact(db: Session, *, user_id: str, contact_id: str | None) -> None:
    if contact_id and not ContactRepository(db, user_id=user_id).get(contact_id):
        raise HTTPException(status_code=404, detail="Contact not found")


def _status_filter(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    try:
        return normalize_deal_status(value)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post(
    "",
    response_model=PipelineCreateOut,
    summary="Create deal",
    description="A missing title defaults to a generated `SP-` serial.",
    responses=error_responses(401, 404, 422, 500),
)
def create_deal(
    payload: PipelineCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _ensure_contact(db, user_id=user.id, contact_id=payload.contact_id)
    deal = PipelineRepository(db, user_id=user.id).create(
        title=payload.title or generate_deal_serial(),
        description=payload.description,
        notes=payload.notes,
        contact_id=payload.contact_id,
        status=payload.status,
        amount=to_money(payload.amount),
    )
    deal_id, title = deal.id, deal.title
    commit_or_500(db, action="create deal")
    return PipelineCreateOut(id=deal_id, title=title)


@router.get(
    "",
    response_model=PipelineListOut,
    summary="List deals",
    responses=error_responses(401, 422, 500),
)
def list_deals(
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    normalized_status = _status_filter(status_filter)
    repo = PipelineRepository(db, user_id=user.id)
    total = repo.count(status=normalized_status)
    deals = repo.list(offset=offset, limit=limit, status=normalized_status)
    items = pipeline_outs(db, user_id=user.id, deals=deals)
    count = len(items)
    return PipelineListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
        status=normalized_status,
    )


@router.get(
    "/board",
    response_model=PipelineBoardOut,
    summary="Deals grouped by status",
    description="One column per funnel status, in funnel order.",
    responses=error_responses(401, 500),
)
def deal_board(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    deals = PipelineRepository(db, user_id=user.id).list()
    items = pipeline_outs(db, user_id=user.id, deals=deals)

    columns: dict[str, list[PipelineOut]] = {deal_status: [] for deal_status in DEAL_STATUSES}
    for item in items:
        columns.setdefault(item.status, []).append(item)

    return PipelineBoardOut(
        columns=[
            PipelineBoardColumnOut(
                status=deal_status,
                count=len(column),
                total_amount=float(
                    to_money(sum((to_money(item.amount) for item in column), ZERO_MONEY))
                ),
                items=column,
            )
            for deal_status, column in columns.items()
        ]
    )


@router.get(
    "/{deal_id}",
    response_model=PipelineOut,
    summary="Get deal",
    responses=error_responses(401, 404, 500),
)
def get_deal(
    deal_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    deal = deal_or_404(PipelineRepository(db, user_id=user.id), deal_id)
    return pipeline_outs(db, user_id=user.id, deals=[deal])[0]


@router.patch(
    "/{deal_id}",
    response_model=PipelineOut,
    summary="Update deal",
    description="The amount of a closed deal cannot change.",
    responses=error_responses(400, 401, 404, 409, 422, 500),
)
def update_deal(
    deal_id: str,
    payload: PipelineUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    repo = PipelineRepository(db, user_id=user.id)
    deal = deal_or_404(repo, deal_id)
    fields_set = payload.model_fields_set
    changes: dict = {}

    if "title" in fields_set:
        if payload.title is None:
            raise HTTPException(status_code=400, detail="title cannot be null")
        changes["title"] = payload.title
    if "status" in fields_set:
        if payload.status is None:
            raise HTTPException(status_code=400, detail="status cannot be null")
        changes["status"] = payload.status
    if "amount" in fields_set:
        if payload.amount is None:
            raise HTTPException(status_code=400, detail="amount cannot be null")
        next_amount = to_money(payload.amount)
        if deal.status in CLOSED_DEAL_STATUSES and next_amount != to_money(deal.amount):
            raise HTTPException(status_code=409, detail="Amount cannot change once a deal is closed")
        changes["amount"] = next_amount
    if "contact_id" in fields_set:
        _ensure_contact(db, user_id=user.id, contact_id=payload.contact_id)
        changes["contact_id"] = payload.contact_id
    for field_name in ("description", "notes"):
        if field_name in fields_set:
            changes[field_name] = getattr(payload, field_name)

    repo.update(deal, **changes)
    commit_or_500(db, action="update deal")
    db.refresh(deal)
    return pipeline_outs(db, user_id=user.id, deals=[deal])[0]


@router.delete(
    "/{deal_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete deal",
    description="Invoices raised against the deal are kept; their deal link is cleared.",
    responses=error_responses(401, 404, 500),
)
def delete_deal(
    deal_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    repo = PipelineRepository(db, user_id=user.id)
    repo.delete(deal_or_404(repo, deal_id))
    commit_or_500(db, action="delete deal")
    return None
