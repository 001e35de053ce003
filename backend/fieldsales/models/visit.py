"""Visit model - one check-in/check-out session at a client.

A visit with ``check_out_at IS NULL`` is *open*. The partial unique index
``uq_visits_one_open_per_user`` lets the database itself guarantee that a
user never has two open visits, whatever the interleaving of requests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldsales.db.base import Base, TimestampMixin

OPEN_VISIT_PREDICATE = text("check_out_at IS NULL")


class Visit(Base, TimestampMixin):
    """A field visit by a sales user, optionally at a known company."""

    __tablename__ = "visits"
    __table_args__ = (
        Index(
            "uq_visits_one_open_per_user",
            "user_id",
            unique=True,
            sqlite_where=OPEN_VISIT_PREDICATE,
            postgresql_where=OPEN_VISIT_PREDICATE,
        ),
        Index("ix_visits_user_check_in", "user_id", "check_in_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    company_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("companies.id"), nullable=True, index=True,
    )

    check_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    check_in_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    check_in_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    check_in_no_gps_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    check_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    check_out_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    check_out_no_gps_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    company = relationship("Company", lazy="joined")
    sales = relationship("Sale", back_populates="visit")

    @property
    def is_open(self) -> bool:
        return self.check_out_at is None
