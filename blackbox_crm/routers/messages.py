from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from blackbox_crm.core.api_docs import error_responses
from blackbox_crm.core.deps import commit_or_500, get_db
from blackbox_crm.core.security_current import get_current_user
from blackbox_crm.models.message import Message
from blackbox_crm.models.user import User
from blackbox_crm.repositories.messages import MessageRepository
from blackbox_crm.schemas.common import PaginationMeta
from blackbox_crm.schemas.message import MessageCreateIn, MessageListOut, MessageOut

router = APIRouter(prefix="/messages", tags=["messages"])


def message_out(message: Message) -> MessageOut:
    return MessageOut(
        id=message.id,
        sender_name=message.sender_name,
        content=message.content,
        created_at=message.created_at,
    )


@router.post(
    "",
    response_model=MessageOut,
    summary="Record message",
    responses=error_responses(401, 422, 500),
)
def create_message(
    payload: MessageCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    message = MessageRepository(db, user_id=user.id).create(
        sender_name=payload.sender_name,
        content=payload.content,
    )
    commit_or_500(db, action="record message")
    db.refresh(message)
    return message_out(message)


@router.get(
    "",
    response_model=MessageListOut,
    summary="List messages",
    description="Newest first.",
    responses=error_responses(401, 422, 500),
)
def list_messages(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    repo = MessageRepository(db, user_id=user.id)
    total = repo.count()
    items = [message_out(message) for message in repo.list(offset=offset, limit=limit)]
    count = len(items)
    return MessageListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.delete(
    "/{message_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete message",
    responses=error_responses(401, 404, 500),
)
def delete_message(
    message_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    repo = MessageRepository(db, user_id=user.id)
    message = repo.get(message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    repo.delete(message)
    commit_or_500(db, action="delete message")
    return None
