"""Company and technology schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import EmailStr, Field, field_validator

from fieldsales.schemas.base import CamelModel, UtcDatetime


class CompanyCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    address: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    nif: Optional[str] = Field(None, max_length=20)

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required.")
        return v


class CompanyResponse(CamelModel):
    id: int
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    nif: Optional[str] = None
    created_at: Optional[UtcDatetime] = None


class CompanyListItem(CompanyResponse):
    visits_count: int = 0
    sales_count: int = 0


class TechnologyCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    active: bool = True


class TechnologyUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    active: Optional[bool] = None


class TechnologyResponse(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    active: bool
