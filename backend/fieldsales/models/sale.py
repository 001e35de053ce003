"""Sale model."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldsales.db.base import Base, TimestampMixin


class Sale(Base, TimestampMixin):
    """A technology sold to a company, optionally during a visit."""

    __tablename__ = "sales"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False, index=True)
    technology_id: Mapped[int] = mapped_column(ForeignKey("technologies.id"), nullable=False, index=True)
    visit_id: Mapped[Optional[int]] = mapped_column(ForeignKey("visits.id"), nullable=True, index=True)
    value_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user = relationship("User", lazy="joined")
    company = relationship("Company", lazy="joined")
    technology = relationship("Technology", lazy="joined")
    visit = relationship("Visit", back_populates="sales")
