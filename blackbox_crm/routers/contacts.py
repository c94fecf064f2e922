from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from blackbox_crm.core.api_docs import error_responses
from blackbox_crm.core.deps import commit_or_500, get_db
from blackbox_crm.core.security_current import get_current_user
from blackbox_crm.models.contact import Contact
from blackbox_crm.models.user import User
from blackbox_crm.repositories.contacts import ContactRepository
from blackbox_crm.schemas.common import PaginationMeta
from blackbox_crm.schemas.contact import (
    ContactCreateIn,
    ContactListOut,
    ContactOut,
    ContactSummaryOut,
    ContactUpdateIn,
)

router = APIRouter(prefix="/contacts", tags=["contacts"])


def contact_out(contact: Contact) -> ContactOut:
    return ContactOut(
        id=contact.id,
        name=contact.name,
        phone=contact.phone,
        email=contact.email,
        company=contact.company,
        address=contact.address,
        ranking=contact.ranking,
        created_at=contact.created_at,
        updated_at=contact.updated_at,
    )


def contact_summary_out(contact: Contact | None) -> ContactSummaryOut | None:
    if contact is None:
        return None
    return ContactSummaryOut(
        id=contact.id,
        name=contact.name,
        company=contact.company,
        email=contact.email,
        phone=contact.phone,
    )


def contact_or_404(repo: ContactRepository, contact_id: str) -> Contact:
    contact = repo.get(contact_id)
    if not contact:
        raise HTTPException(status_code=404, detail="Contact not found")
    return contact


@router.post(
    "",
    response_model=ContactOut,
    summary="Create contact",
    responses=error_responses(401, 422, 500),
)
def create_contact(
    payload: ContactCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    repo = ContactRepository(db, user_id=user.id)
    contact = repo.create(
        name=payload.name,
        phone=payload.phone,
        email=str(payload.email) if payload.email else None,
        company=payload.company,
        address=payload.address,
        ranking=payload.ranking,
    )
    commit_or_500(db, action="create contact")
    db.refresh(contact)
    return contact_out(contact)


@router.get(
    "",
    response_model=ContactListOut,
    summary="List contacts",
    description="Newest first. `q` matches name, company, email or phone.",
    responses=error_responses(401, 422, 500),
)
def list_contacts(
    q: str | None = Query(default=None),
    limit: int = Query(default=25, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    normalized_q = q.strip().lower() if q and q.strip() else None
    total, contacts = ContactRepository(db, user_id=user.id).search(
        normalized_q,
        offset=offset,
        limit=limit,
    )
    items = [contact_out(contact) for contact in contacts]
    count = len(items)
    return ContactListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
        q=normalized_q,
    )


@router.get(
    "/{contact_id}",
    response_model=ContactOut,
    summary="Get contact",
    responses=error_responses(401, 404, 500),
)
def get_contact(
    contact_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return contact_out(contact_or_404(ContactRepository(db, user_id=user.id), contact_id))


@router.patch(
    "/{contact_id}",
    response_model=ContactOut,
    summary="Update contact",
    responses=error_responses(400, 401, 404, 422, 500),
)
def update_contact(
    contact_id: str,
    payload: ContactUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    repo = ContactRepository(db, user_id=user.id)
    contact = contact_or_404(repo, contact_id)

    fields_set = payload.model_fields_set
    changes: dict = {}
    if "name" in fields_set:
        if payload.name is None:
            raise HTTPException(status_code=400, detail="name cannot be null")
        changes["name"] = payload.name
    if "ranking" in fields_set:
        if payload.ranking is None:
            raise HTTPException(status_code=400, detail="ranking cannot be null")
        changes["ranking"] = payload.ranking
    if "email" in fields_set:
        changes["email"] = str(payload.email) if payload.email else None
    for field_name in ("phone", "company", "address"):
        if field_name in fields_set:
            changes[field_name] = getattr(payload, field_name)

    repo.update(contact, **changes)
    commit_or_500(db, action="update contact")
    db.refresh(contact)
    return contact_out(contact)


@router.delete(
    "/{contact_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete contact",
    description="Deals and invoices linked to the contact are kept; their contact link is cleared.",
    responses=error_responses(401, 404, 500),
)
def delete_contact(
    contact_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    repo = ContactRepository(db, user_id=user.id)
    repo.delete(contact_or_404(repo, contact_id))
    commit_or_500(db, action="delete contact")
    return None
