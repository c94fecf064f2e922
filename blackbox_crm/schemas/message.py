from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from blackbox_crm.schemas.common import PaginationMeta


class MessageCreateIn(BaseModel):
    sender_name: str = Field(max_length=120)
    content: str

    @field_validator("sender_name", "content")
    @classmethod
    def validate_required(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value is required")
        return cleaned


class MessageOut(BaseModel):
    id: str
    sender_name: str
    content: str
    created_at: datetime


class MessageListOut(BaseModel):
    items: list[MessageOut]
    pagination: PaginationMeta
