"""
Visit Session Service

Server-authoritative state machine for field visits. Per user:

    NO_ACTIVE_VISIT --checkin-->  VISIT_OPEN
    VISIT_OPEN      --checkout--> NO_ACTIVE_VISIT

Both transitions require either a GPS pair or a non-empty justification.
A check-in while a visit is open, or a check-out with none open, is rejected
and leaves the state unchanged.

The one-open-visit rule is not a read-then-write check: the insert relies on
the ``uq_visits_one_open_per_user`` partial unique index and the close is a
conditional UPDATE, so concurrent requests for the same user cannot both win.
"""

import enum
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fieldsales.models.company import Company
from fieldsales.models.visit import Visit

logger = logging.getLogger(__name__)

GPS_REQUIRED_MESSAGE = "GPS or a justification for its absence is required."
OPEN_VISIT_EXISTS_MESSAGE = "There is already an active visit. Check out first."
NO_OPEN_VISIT_MESSAGE = "There is no active visit to check out."


class VisitState(str, enum.Enum):
    NO_ACTIVE_VISIT = "no_active_visit"
    VISIT_OPEN = "visit_open"


class VisitSessionError(Exception):
    """Base class for rejected visit transitions."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class GpsRequiredError(VisitSessionError):
    def __init__(self):
        super().__init__(GPS_REQUIRED_MESSAGE)


class VisitStateError(VisitSessionError):
    """Transition not allowed from the user's current state."""


class CompanyNotFoundError(VisitSessionError):
    status_code = 404

    def __init__(self, company_id: int):
        super().__init__(f"Company {company_id} not found")


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_duration_seconds(check_in_at: datetime, check_out_at: datetime) -> int:
    """Whole seconds between check-in and check-out, never negative."""
    delta = _as_utc(check_out_at) - _as_utc(check_in_at)
    return max(0, int(delta.total_seconds() // 1))


class VisitSessionService:
    """Applies check-in/check-out transitions for one database session."""

    def __init__(self, db: Session):
        self.db = db

    def get_active_visit(self, user_id: int) -> Optional[Visit]:
        """Return the user's open visit, or None."""
        return self.db.execute(
            select(Visit)
            .where(Visit.user_id == user_id, Visit.check_out_at.is_(None))
            .order_by(Visit.check_in_at.desc())
        ).scalars().first()

    def get_state(self, user_id: int) -> VisitState:
        if self.get_active_visit(user_id) is None:
            return VisitState.NO_ACTIVE_VISIT
        return VisitState.VISIT_OPEN

    def check_in(
        self,
        user_id: int,
        company_id: Optional[int] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        no_gps_reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Visit:
        """Open a visit for the user.

        Raises:
            GpsRequiredError: neither a GPS pair nor a justification was given.
            CompanyNotFoundError: company_id does not exist.
            VisitStateError: the user already has an open visit.
        """
        has_gps = lat is not None and lng is not None
        if not has_gps and not (no_gps_reason and no_gps_reason.strip()):
            raise GpsRequiredError()

        if company_id is not None and self.db.get(Company, company_id) is None:
            raise CompanyNotFoundError(company_id)

        # Fast path for the common rejection; the index below is the real guard.
        if self.get_active_visit(user_id) is not None:
            raise VisitStateError(OPEN_VISIT_EXISTS_MESSAGE)

        visit = Visit(
            user_id=user_id,
            company_id=company_id,
            check_in_at=now or datetime.now(timezone.utc),
            check_in_lat=lat if has_gps else None,
            check_in_lng=lng if has_gps else None,
            check_in_no_gps_reason=no_gps_reason,
        )
        self.db.add(visit)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Concurrent check-in rejected by open-visit index for user {user_id}")
            raise VisitStateError(OPEN_VISIT_EXISTS_MESSAGE)

        logger.info(f"User {user_id} checked in: visit {visit.id} (gps={has_gps})")
        return visit

    def check_out(
        self,
        user_id: int,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        no_gps_reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Visit:
        """Close the user's open visit and compute its duration.

        Raises:
            GpsRequiredError: neither a GPS pair nor a justification was given.
            VisitStateError: the user has no open visit.
        """
        has_gps = lat is not None and lng is not None
        if not has_gps and not (no_gps_reason and no_gps_reason.strip()):
            raise GpsRequiredError()

        visit = self.get_active_visit(user_id)
        if visit is None:
            raise VisitStateError(NO_OPEN_VISIT_MESSAGE)

        check_out_at = now or datetime.now(timezone.utc)
        duration = compute_duration_seconds(visit.check_in_at, check_out_at)

        result = self.db.execute(
            update(Visit)
            .where(Visit.id == visit.id, Visit.check_out_at.is_(None))
            .values(
                check_out_at=check_out_at,
                check_out_lat=lat if has_gps else None,
                check_out_lng=lng if has_gps else None,
                check_out_no_gps_reason=no_gps_reason,
                duration_seconds=duration,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Someone else closed it between the read and the update
            raise VisitStateError(NO_OPEN_VISIT_MESSAGE)

        self.db.flush()
        self.db.refresh(visit)
        logger.info(f"User {user_id} checked out: visit {visit.id} ({duration}s)")
        return visit

    def associate_company(self, visit: Visit, company_id: int) -> Visit:
        if self.db.get(Company, company_id) is None:
            raise CompanyNotFoundError(company_id)
        visit.company_id = company_id
        self.db.flush()
        self.db.refresh(visit)
        return visit
