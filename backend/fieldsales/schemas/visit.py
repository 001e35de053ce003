"""Visit check-in/check-out schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field, field_validator

from fieldsales.schemas.base import CamelModel, UtcDatetime


def _clean_reason(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    if not v:
        return None
    if len(v) < 3:
        raise ValueError("Justify the missing GPS (at least 3 characters).")
    return v


class CheckinRequest(CamelModel):
    """Body of POST /visits/checkin."""

    company_id: Optional[int] = None
    check_in_lat: Optional[float] = Field(None, ge=-90, le=90)
    check_in_lng: Optional[float] = Field(None, ge=-180, le=180)
    no_gps_reason: Optional[str] = Field(None, max_length=500)

    @field_validator("no_gps_reason")
    @classmethod
    def clean_reason(cls, v: Optional[str]) -> Optional[str]:
        return _clean_reason(v)

    @property
    def has_gps(self) -> bool:
        return self.check_in_lat is not None and self.check_in_lng is not None


class CheckoutRequest(CamelModel):
    """Body of POST /visits/checkout."""

    check_out_lat: Optional[float] = Field(None, ge=-90, le=90)
    check_out_lng: Optional[float] = Field(None, ge=-180, le=180)
    no_gps_reason: Optional[str] = Field(None, max_length=500)

    @field_validator("no_gps_reason")
    @classmethod
    def clean_reason(cls, v: Optional[str]) -> Optional[str]:
        return _clean_reason(v)

    @property
    def has_gps(self) -> bool:
        return self.check_out_lat is not None and self.check_out_lng is not None


class AssociateCompanyRequest(CamelModel):
    company_id: int


class CheckinVisit(CamelModel):
    id: int
    check_in_at: UtcDatetime
    company_id: Optional[int] = None


class CheckoutVisit(CamelModel):
    id: int
    check_in_at: UtcDatetime
    check_out_at: UtcDatetime
    duration_seconds: int


class ActiveVisit(CamelModel):
    id: int
    check_in_at: UtcDatetime
    company_id: Optional[int] = None
    company_name: Optional[str] = None


class VisitCompany(CamelModel):
    id: int
    name: str
    address: Optional[str] = None


class VisitDetail(CamelModel):
    """Full visit row as listed in the agent's history."""

    id: int
    user_id: int
    company_id: Optional[int] = None
    company: Optional[VisitCompany] = None
    check_in_at: UtcDatetime
    check_in_lat: Optional[float] = None
    check_in_lng: Optional[float] = None
    check_in_no_gps_reason: Optional[str] = None
    check_out_at: Optional[UtcDatetime] = None
    check_out_lat: Optional[float] = None
    check_out_lng: Optional[float] = None
    check_out_no_gps_reason: Optional[str] = None
    duration_seconds: Optional[int] = None
    sales_count: int = 0


class CheckinResponse(CamelModel):
    visit: CheckinVisit


class CheckoutResponse(CamelModel):
    visit: CheckoutVisit


class ActiveVisitResponse(CamelModel):
    visit: Optional[ActiveVisit] = None


class VisitDetailResponse(CamelModel):
    message: Optional[str] = None
    visit: VisitDetail


class VisitListResponse(CamelModel):
    visits: List[VisitDetail]
    pagination: dict
