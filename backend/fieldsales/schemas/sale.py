"""Sale schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from fieldsales.schemas.base import CamelModel, UtcDatetime


class SaleCreate(CamelModel):
    visit_id: Optional[int] = None
    company_id: int
    technology_id: int
    value_cents: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=1000)


class NamedRef(CamelModel):
    id: int
    name: Optional[str] = None


class SaleVisitRef(CamelModel):
    id: int
    check_in_at: UtcDatetime


class SaleUserRef(CamelModel):
    id: int
    name: Optional[str] = None
    email: str


class SaleResponse(CamelModel):
    id: int
    user_id: int
    company_id: int
    technology_id: int
    visit_id: Optional[int] = None
    value_cents: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[UtcDatetime] = None
    company: Optional[NamedRef] = None
    technology: Optional[NamedRef] = None
    visit: Optional[SaleVisitRef] = None
    user: Optional[SaleUserRef] = None
