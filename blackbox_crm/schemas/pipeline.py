from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from blackbox_crm.schemas.common import PaginationMeta, normalize_optional_text
from blackbox_crm.schemas.contact import ContactSummaryOut

DealStatus = str
STATUS_CONTACTED = "contacted"
STATUS_QUALIFIED = "qualified"
STATUS_IN_PROGRESS = "in_progress"
STATUS_CLOSED_WON = "closed_won"
STATUS_CLOSED_LOST = "closed_lost"
# Board column order.
DEAL_STATUSES = (
    STATUS_CONTACTED,
    STATUS_QUALIFIED,
    STATUS_IN_PROGRESS,
    STATUS_CLOSED_WON,
    STATUS_CLOSED_LOST,
)
CLOSED_DEAL_STATUSES = frozenset({STATUS_CLOSED_WON, STATUS_CLOSED_LOST})
OPEN_DEAL_STATUSES = tuple(s for s in DEAL_STATUSES if s not in CLOSED_DEAL_STATUSES)


def normalize_deal_status(value: str) -> str:
    cleaned = (value or "").strip().lower().replace(" ", "_").replace("-", "_")
    if cleaned not in DEAL_STATUSES:
        allowed = ", ".join(DEAL_STATUSES)
        raise ValueError(f"Invalid status '{value}'. Allowed: {allowed}")
    return cleaned


class PipelineCreateIn(BaseModel):
    title: str | None = Field(default=None, max_length=40)
    description: str | None = Field(default=None, max_length=255)
    notes: str | None = None
    contact_id: str | None = Field(default=None, max_length=36)
    status: DealStatus = STATUS_CONTACTED
    amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)

    @field_validator("title", "description", "notes", "contact_id")
    @classmethod
    def normalize_optional(cls, value: str | None) -> str | None:
        return normalize_optional_text(value)

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        return normalize_deal_status(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "description": "Website redesign",
                "notes": "Decision maker wants a demo next week",
                "contact_id": "contact-id",
                "status": "qualified",
                "amount": 5000,
            }
        }
    )


class PipelineUpdateIn(BaseModel):
    title: str | None = Field(default=None, max_length=40)
    description: str | None = Field(default=None, max_length=255)
    notes: str | None = None
    contact_id: str | None = Field(default=None, max_length=36)
    status: DealStatus | None = None
    amount: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)

    @field_validator("title", "description", "notes", "contact_id")
    @classmethod
    def normalize_optional(cls, value: str | None) -> str | None:
        return normalize_optional_text(value)

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_deal_status(value)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "PipelineUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class PipelineCreateOut(BaseModel):
    id: str
    title: str


class PipelineOut(BaseModel):
    id: str
    title: str
    description: str | None = None
    notes: str | None = None
    contact_id: str | None = None
    contact: ContactSummaryOut | None = None
    status: DealStatus
    amount: float
    invoice_status: str | None = None
    created_at: datetime
    updated_at: datetime


class PipelineListOut(BaseModel):
    items: list[PipelineOut]
    pagination: PaginationMeta
    status: DealStatus | None = None


class PipelineBoardColumnOut(BaseModel):
    status: DealStatus
    count: int
    total_amount: float
    items: list[PipelineOut]


class PipelineBoardOut(BaseModel):
    columns: list[PipelineBoardColumnOut]
