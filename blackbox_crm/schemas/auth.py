from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from typing import Optional

from blackbox_crm.schemas.common import normalize_optional_text


class RegisterIn(BaseModel):
    email: EmailStr
    full_name: str = Field(max_length=100)
    password: str
    username: Optional[str] = Field(default=None, max_length=50)
    company: Optional[str] = Field(default=None, max_length=120)

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("full_name is required")
        return cleaned

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < 8:
            raise ValueError("password must be at least 8 characters")
        return value

    @field_validator("username", "company")
    @classmethod
    def normalize_optional(cls, value: Optional[str]) -> Optional[str]:
        return normalize_optional_text(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "owner@example.com",
                "full_name": "Sara Khan",
                "password": "password123",
                "username": "sara_khan",
                "company": "BlackBox Solutions",
            }
        }
    )


class LoginIn(BaseModel):
    identifier: str
    password: str

    @field_validator("identifier")
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("identifier is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "identifier": "owner@example.com",
                "password": "password123",
            }
        }
    )


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserProfileOut(BaseModel):
    id: str
    email: str
    username: str
    full_name: Optional[str] = None
    company: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class UpdateProfileIn(BaseModel):
    full_name: Optional[str] = Field(default=None, max_length=100)
    username: Optional[str] = Field(default=None, max_length=50)
    company: Optional[str] = Field(default=None, max_length=120)
    phone: Optional[str] = Field(default=None, max_length=40)
    address: Optional[str] = Field(default=None, max_length=255)

    @field_validator("full_name", "username")
    @classmethod
    def validate_required_if_present(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value cannot be empty")
        return cleaned

    @field_validator("company", "phone", "address")
    @classmethod
    def normalize_optional(cls, value: Optional[str]) -> Optional[str]:
        return normalize_optional_text(value)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "UpdateProfileIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self
