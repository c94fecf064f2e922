import time
from collections.abc import Sequence
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from blackbox_crm.core.api_docs import error_responses
from blackbox_crm.core.config import settings
from blackbox_crm.core.deps import commit_or_500, get_db
from blackbox_crm.core.id_utils import generate_invoice_serial
from blackbox_crm.core.money import to_money
from blackbox_crm.core.security_current import get_current_user
from blackbox_crm.models.invoice import Invoice
from blackbox_crm.models.user import User
from blackbox_crm.repositories.contacts import ContactRepository
from blackbox_crm.repositories.invoices import InvoiceRepository
from blackbox_crm.repositories.pipelines import PipelineRepository
from blackbox_crm.routers.contacts import contact_summary_out
from blackbox_crm.routers.pipelines import deal_or_404
from blackbox_crm.schemas.common import PaginationMeta
from blackbox_crm.schemas.invoice import (
    ALLOWED_INVOICE_STATUSES,
    InvoiceCreateIn,
    InvoiceCreateOut,
    InvoiceListOut,
    InvoiceOut,
    InvoiceShareOut,
    InvoiceUpdateIn,
)
from blackbox_crm.services.invoice_pdf_service import build_invoice_pdf
from blackbox_crm.services.share_service import build_invoice_share

router = APIRouter(prefix="/invoices", tags=["invoices"])
SERIAL_CONFLICT_DETAIL = "Serial number already exists"

_MAX_SERIAL_ATTEMPTS = 1000


def _invoice_outs(db: Session, *, user_id: str, invoices: Sequence[Invoice]) -> list[InvoiceOut]:
    contacts = ContactRepository(db, user_id=user_id).get_many(
        [invoice.contact_id for invoice in invoices if invoice.contact_id]
    )
    return [
        InvoiceOut(
            id=invoice.id,
            serial_number=invoice.serial_number,
            contact_id=invoice.contact_id,
            contact=contact_summary_out(contacts.get(invoice.contact_id)) if invoice.contact_id else None,
            sales_pipeline_id=invoice.sales_pipeline_id,
            status=invoice.status,
            amount=float(to_money(invoice.amount)),
            invoice_date=invoice.invoice_date,
            due_date=invoice.due_date,
            description=invoice.description,
            created_at=invoice.created_at,
            updated_at=invoice.updated_at,
        )
        for invoice in invoices
    ]


def _invoice_or_404(repo: InvoiceRepository, invoice_id: str) -> Invoice:
    invoice = repo.get(invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


def _ensure_contact(db: Session, *, user_id: str, contact_id: str | None) -> None:
    if contact_id and not ContactRepository(db, user_id=user_id).get(contact_id):
        raise HTTPException(status_code=404, detail="Contact not found")


def _generated_serial(repo: InvoiceRepository) -> str:
    now_ms = int(time.time() * 1000)
    for step in range(_MAX_SERIAL_ATTEMPTS):
        candidate = generate_invoice_serial(now_ms + step)
        if not repo.serial_taken(candidate):
            return candidate
    raise HTTPException(status_code=409, detail="Could not allocate an invoice serial number")


def _status_filter(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    normalized = value.strip().lower()
    if normalized not in ALLOWED_INVOICE_STATUSES:
        allowed = ", ".join(sorted(ALLOWED_INVOICE_STATUSES))
        raise HTTPException(status_code=422, detail=f"Invalid status '{value}'. Allowed: {allowed}")
    return normalized


@router.post(
    "",
    response_model=InvoiceCreateOut,
    summary="Create invoice",
    description=(
        "When linked to a deal, a missing amount, description or contact is taken from the deal. "
        "A missing serial number defaults to a generated `INV-` serial."
    ),
    responses=error_responses(400, 401, 404, 409, 422, 500),
)
def create_invoice(
    payload: InvoiceCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    repo = InvoiceRepository(db, user_id=user.id)

    deal = None
    if payload.sales_pipeline_id:
        deal = deal_or_404(PipelineRepository(db, user_id=user.id), payload.sales_pipeline_id)

    contact_id = payload.contact_id or (deal.contact_id if deal else None)
    _ensure_contact(db, user_id=user.id, contact_id=contact_id)

    amount = payload.amount
    if amount is None and deal is not None:
        amount = deal.amount
    if amount is None:
        raise HTTPException(status_code=400, detail="amount is required when no deal is linked")

    invoice_date = payload.invoice_date or datetime.now(timezone.utc).date()
    if payload.due_date and payload.due_date < invoice_date:
        raise HTTPException(status_code=400, detail="due_date cannot be before invoice_date")

    if payload.serial_number:
        if repo.serial_taken(payload.serial_number):
            raise HTTPException(status_code=409, detail=SERIAL_CONFLICT_DETAIL)
        serial_number = payload.serial_number
    else:
        serial_number = _generated_serial(repo)

    try:
        invoice = repo.create(
            serial_number=serial_number,
            contact_id=contact_id,
            sales_pipeline_id=deal.id if deal else None,
            status=payload.status,
            amount=to_money(amount),
            invoice_date=invoice_date,
            due_date=payload.due_date,
            description=payload.description or (deal.description if deal else None),
        )
    except IntegrityError as exc:
        # Another request took the serial between the check and the insert.
        db.rollback()
        raise HTTPException(status_code=409, detail=SERIAL_CONFLICT_DETAIL) from exc
    invoice_id = invoice.id
    commit_or_500(db, action="create invoice", conflict_detail=SERIAL_CONFLICT_DETAIL)
    return InvoiceCreateOut(id=invoice_id, serial_number=serial_number)


@router.get(
    "",
    response_model=InvoiceListOut,
    summary="List invoices",
    responses=error_responses(401, 422, 500),
)
def list_invoices(
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    normalized_status = _status_filter(status_filter)
    repo = InvoiceRepository(db, user_id=user.id)
    total = repo.count(status=normalized_status)
    invoices = repo.list(offset=offset, limit=limit, status=normalized_status)
    items = _invoice_outs(db, user_id=user.id, invoices=invoices)
    count = len(items)
    return InvoiceListOut(
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
    "/{invoice_id}",
    response_model=InvoiceOut,
    summary="Get invoice",
    responses=error_responses(401, 404, 500),
)
def get_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    invoice = _invoice_or_404(InvoiceRepository(db, user_id=user.id), invoice_id)
    return _invoice_outs(db, user_id=user.id, invoices=[invoice])[0]


@router.patch(
    "/{invoice_id}",
    response_model=InvoiceOut,
    summary="Update invoice",
    responses=error_responses(400, 401, 404, 409, 422, 500),
)
def update_invoice(
    invoice_id: str,
    payload: InvoiceUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    repo = InvoiceRepository(db, user_id=user.id)
    invoice = _invoice_or_404(repo, invoice_id)
    fields_set = payload.model_fields_set
    changes: dict = {}

    for field_name in ("serial_number", "status", "amount", "invoice_date"):
        if field_name in fields_set and getattr(payload, field_name) is None:
            raise HTTPException(status_code=400, detail=f"{field_name} cannot be null")

    if "serial_number" in fields_set and payload.serial_number != invoice.serial_number:
        if repo.serial_taken(payload.serial_number, exclude_id=invoice.id):
            raise HTTPException(status_code=409, detail=SERIAL_CONFLICT_DETAIL)
        changes["serial_number"] = payload.serial_number
    if "status" in fields_set:
        changes["status"] = payload.status
    if "amount" in fields_set:
        changes["amount"] = to_money(payload.amount)
    if "contact_id" in fields_set:
        _ensure_contact(db, user_id=user.id, contact_id=payload.contact_id)
        changes["contact_id"] = payload.contact_id
    if "sales_pipeline_id" in fields_set:
        if payload.sales_pipeline_id:
            deal_or_404(PipelineRepository(db, user_id=user.id), payload.sales_pipeline_id)
        changes["sales_pipeline_id"] = payload.sales_pipeline_id
    if "description" in fields_set:
        changes["description"] = payload.description

    invoice_date = payload.invoice_date if "invoice_date" in fields_set else invoice.invoice_date
    due_date = payload.due_date if "due_date" in fields_set else invoice.due_date
    if due_date and invoice_date and due_date < invoice_date:
        raise HTTPException(status_code=400, detail="due_date cannot be before invoice_date")
    changes["invoice_date"] = invoice_date
    changes["due_date"] = due_date

    try:
        repo.update(invoice, **changes)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=SERIAL_CONFLICT_DETAIL) from exc
    commit_or_500(db, action="update invoice", conflict_detail=SERIAL_CONFLICT_DETAIL)
    db.refresh(invoice)
    return _invoice_outs(db, user_id=user.id, invoices=[invoice])[0]


@router.delete(
    "/{invoice_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete invoice",
    responses=error_responses(401, 404, 500),
)
def delete_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    repo = InvoiceRepository(db, user_id=user.id)
    repo.delete(_invoice_or_404(repo, invoice_id))
    commit_or_500(db, action="delete invoice")
    return None


@router.get(
    "/{invoice_id}/pdf",
    summary="Download invoice PDF",
    description="Renders the invoice as a paged portrait PDF named `invoice-<serial_number>.pdf`.",
    response_class=Response,
    responses={
        200: {"content": {"application/pdf": {}}, "description": "Invoice document"},
        **error_responses(401, 404, 500),
    },
)
def download_invoice_pdf(
    invoice_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    invoice = _invoice_or_404(InvoiceRepository(db, user_id=user.id), invoice_id)
    contact = ContactRepository(db, user_id=user.id).get(invoice.contact_id) if invoice.contact_id else None
    deal = (
        PipelineRepository(db, user_id=user.id).get(invoice.sales_pipeline_id)
        if invoice.sales_pipeline_id
        else None
    )

    pdf = build_invoice_pdf(invoice, contact=contact, deal=deal)
    if pdf is None:
        raise HTTPException(status_code=500, detail="Invoice PDF could not be generated")
    return Response(
        content=pdf.content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{pdf.filename}"'},
    )


@router.get(
    "/{invoice_id}/share",
    response_model=InvoiceShareOut,
    summary="Invoice share link",
    description="Public invoice link plus a WhatsApp deep link carrying it.",
    responses=error_responses(401, 404, 500),
)
def share_invoice(
    invoice_id: str,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    invoice = _invoice_or_404(InvoiceRepository(db, user_id=user.id), invoice_id)
    origin = settings.public_web_base_url or str(request.base_url).rstrip("/")
    share = build_invoice_share(origin, invoice.id)
    return InvoiceShareOut(
        invoice_id=share.invoice_id,
        link=share.link,
        message=share.message,
        whatsapp_url=share.whatsapp_url,
    )
