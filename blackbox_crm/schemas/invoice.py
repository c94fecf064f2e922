from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from blackbox_crm.schemas.common import PaginationMeta, normalize_optional_text
from blackbox_crm.schemas.contact import ContactSummaryOut

InvoiceStatus = str
ALLOWED_INVOICE_STATUSES = {"paid", "unpaid"}


def _normalize_status(value: str) -> str:
    cleaned = (value or "").strip().lower()
    if cleaned not in ALLOWED_INVOICE_STATUSES:
        allowed = ", ".join(sorted(ALLOWED_INVOICE_STATUSES))
        raise ValueError(f"Invalid status '{value}'. Allowed: {allowed}")
    return cleaned


class InvoiceCreateIn(BaseModel):
    serial_number: Optional[str] = Field(default=None, max_length=40)
    contact_id: Optional[str] = Field(default=None, max_length=36)
    sales_pipeline_id: Optional[str] = Field(default=None, max_length=36)
    status: InvoiceStatus = "unpaid"
    amount: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    invoice_date: date | None = None
    due_date: date | None = None
    description: Optional[str] = Field(default=None, max_length=255)

    @field_validator("serial_number", "contact_id", "sales_pipeline_id", "description")
    @classmethod
    def _normalize_optional_text(cls, value: Optional[str]) -> Optional[str]:
        return normalize_optional_text(value)

    @field_validator("status")
    @classmethod
    def _validate_status(cls, value: str) -> str:
        return _normalize_status(value)

    @model_validator(mode="after")
    def _validate_dates(self) -> "InvoiceCreateIn":
        if self.invoice_date and self.due_date and self.due_date < self.invoice_date:
            raise ValueError("due_date cannot be before invoice_date")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "contact_id": "contact-id",
                "sales_pipeline_id": "deal-id",
                "status": "unpaid",
                "amount": 5000,
                "invoice_date": "2026-10-01",
                "due_date": "2026-10-31",
                "description": "Website redesign",
            }
        }
    )


class InvoiceUpdateIn(BaseModel):
    serial_number: Optional[str] = Field(default=None, max_length=40)
    contact_id: Optional[str] = Field(default=None, max_length=36)
    sales_pipeline_id: Optional[str] = Field(default=None, max_length=36)
    status: InvoiceStatus | None = None
    amount: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    invoice_date: date | None = None
    due_date: date | None = None
    description: Optional[str] = Field(default=None, max_length=255)

    @field_validator("serial_number", "contact_id", "sales_pipeline_id", "description")
    @classmethod
    def _normalize_optional_text(cls, value: Optional[str]) -> Optional[str]:
        return normalize_optional_text(value)

    @field_validator("status")
    @classmethod
    def _validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_status(value)

    @model_validator(mode="after")
    def _validate_any_field_present(self) -> "InvoiceUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class InvoiceCreateOut(BaseModel):
    id: str
    serial_number: str


class InvoiceOut(BaseModel):
    id: str
    serial_number: str
    contact_id: str | None = None
    contact: ContactSummaryOut | None = None
    sales_pipeline_id: str | None = None
    status: InvoiceStatus
    amount: float
    invoice_date: date
    due_date: date | None = None
    description: str | None = None
    created_at: datetime
    updated_at: datetime


class InvoiceListOut(BaseModel):
    items: list[InvoiceOut]
    pagination: PaginationMeta
    status: InvoiceStatus | None = None


class InvoiceShareOut(BaseModel):
    invoice_id: str
    link: str
    message: str
    whatsapp_url: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "invoice_id": "invoice-id",
                "link": "https://crm.example.com/invoice/invoice-id",
                "message": "Invoice Link: https://crm.example.com/invoice/invoice-id",
                "whatsapp_url": "https://wa.me/?text=Invoice%20Link:%20https://crm.example.com/invoice/invoice-id",
            }
        }
    )
