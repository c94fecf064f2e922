from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from blackbox_crm.schemas.common import PaginationMeta, normalize_optional_text


class ContactCreateIn(BaseModel):
    name: str = Field(max_length=120)
    phone: str | None = Field(default=None, max_length=40)
    email: EmailStr | None = None
    company: str | None = Field(default=None, max_length=120)
    address: str | None = Field(default=None, max_length=255)
    ranking: int = Field(default=1, ge=1, le=5)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    @field_validator("phone", "company", "address")
    @classmethod
    def normalize_optional(cls, value: str | None) -> str | None:
        return normalize_optional_text(value)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip().lower()
        return cleaned or None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Ali Raza",
                "phone": "+92 300 7654321",
                "email": "ali@example.com",
                "company": "Raza Traders",
                "address": "Shahrah-e-Faisal, Karachi",
                "ranking": 4,
            }
        }
    )


class ContactUpdateIn(BaseModel):
    name: str | None = Field(default=None, max_length=120)
    phone: str | None = Field(default=None, max_length=40)
    email: EmailStr | None = None
    company: str | None = Field(default=None, max_length=120)
    address: str | None = Field(default=None, max_length=255)
    ranking: int | None = Field(default=None, ge=1, le=5)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    @field_validator("phone", "company", "address")
    @classmethod
    def normalize_optional(cls, value: str | None) -> str | None:
        return normalize_optional_text(value)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip().lower()
        return cleaned or None

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "ContactUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class ContactOut(BaseModel):
    id: str
    name: str
    phone: str | None = None
    email: str | None = None
    company: str | None = None
    address: str | None = None
    ranking: int
    created_at: datetime
    updated_at: datetime


class ContactSummaryOut(BaseModel):
    id: str
    name: str
    company: str | None = None
    email: str | None = None
    phone: str | None = None


class ContactListOut(BaseModel):
    items: list[ContactOut]
    pagination: PaginationMeta
    q: str | None = None
