"""Visit routes: check-in, check-out, active visit and history."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import func, select

from fieldsales.core.rate_limit import limiter, user_limiter
from fieldsales.core.rbac import RequireSales
from fieldsales.core.responses import clamp_page, paginated_response
from fieldsales.db.session import DbSession
from fieldsales.models.sale import Sale
from fieldsales.models.visit import Visit
from fieldsales.schemas.visit import (
    ActiveVisit,
    ActiveVisitResponse,
    AssociateCompanyRequest,
    CheckinRequest,
    CheckinResponse,
    CheckinVisit,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutVisit,
    VisitDetail,
    VisitDetailResponse,
    VisitListResponse,
)
from fieldsales.services.audit_service import log_action
from fieldsales.services.idempotency_service import (
    IDEMPOTENCY_HEADER,
    find_replay,
    remember_response,
    replay_response,
)
from fieldsales.services.visit_session_service import VisitSessionError, VisitSessionService

logger = logging.getLogger(__name__)

router = APIRouter()


def _visit_detail(visit: Visit, sales_count: int = 0) -> dict:
    detail = VisitDetail.model_validate(visit).model_copy(update={"sales_count": sales_count})
    return detail.model_dump(mode="json", by_alias=True)


@router.post("/checkin", status_code=status.HTTP_201_CREATED, response_model=CheckinResponse)
@user_limiter.limit("30/minute")
def checkin(
    request: Request,
    body: CheckinRequest,
    db: DbSession,
    current_user: RequireSales,
    idempotency_key: Optional[str] = Header(None, alias=IDEMPOTENCY_HEADER),
):
    """Open a visit. Requires a GPS pair or a justification for its absence."""
    replay = find_replay(db, current_user.id, idempotency_key, "visits.checkin")
    if replay is not None:
        return replay_response(replay)

    service = VisitSessionService(db)
    try:
        visit = service.check_in(
            current_user.id,
            company_id=body.company_id,
            lat=body.check_in_lat,
            lng=body.check_in_lng,
            no_gps_reason=body.no_gps_reason,
        )
    except VisitSessionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    log_action(
        db,
        "visit.checkin",
        entity_type="visit",
        entity_id=visit.id,
        user_id=current_user.id,
        details={
            "companyId": visit.company_id,
            "hasGps": body.has_gps,
            "noGpsReason": body.no_gps_reason,
        },
        request=request,
    )

    content = CheckinResponse(visit=CheckinVisit.model_validate(visit)).model_dump(mode="json", by_alias=True)
    remember_response(db, current_user.id, idempotency_key, "visits.checkin", status.HTTP_201_CREATED, content)
    db.commit()
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=content)


@router.post("/checkout", response_model=CheckoutResponse)
@user_limiter.limit("30/minute")
def checkout(
    request: Request,
    body: CheckoutRequest,
    db: DbSession,
    current_user: RequireSales,
    idempotency_key: Optional[str] = Header(None, alias=IDEMPOTENCY_HEADER),
):
    """Close the caller's open visit and record its duration."""
    replay = find_replay(db, current_user.id, idempotency_key, "visits.checkout")
    if replay is not None:
        return replay_response(replay)

    service = VisitSessionService(db)
    try:
        visit = service.check_out(
            current_user.id,
            lat=body.check_out_lat,
            lng=body.check_out_lng,
            no_gps_reason=body.no_gps_reason,
        )
    except VisitSessionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    log_action(
        db,
        "visit.checkout",
        entity_type="visit",
        entity_id=visit.id,
        user_id=current_user.id,
        details={
            "durationSeconds": visit.duration_seconds,
            "hasGps": body.has_gps,
            "noGpsReason": body.no_gps_reason,
        },
        request=request,
    )

    content = CheckoutResponse(visit=CheckoutVisit.model_validate(visit)).model_dump(mode="json", by_alias=True)
    remember_response(db, current_user.id, idempotency_key, "visits.checkout", status.HTTP_200_OK, content)
    db.commit()
    return JSONResponse(status_code=status.HTTP_200_OK, content=content)


@router.get("/active", response_model=ActiveVisitResponse, response_model_by_alias=True)
@limiter.limit("120/minute")
def get_active_visit(request: Request, db: DbSession, current_user: RequireSales):
    """Return the caller's open visit, or null."""
    visit = VisitSessionService(db).get_active_visit(current_user.id)
    if visit is None:
        return ActiveVisitResponse(visit=None)
    return ActiveVisitResponse(
        visit=ActiveVisit(
            id=visit.id,
            check_in_at=visit.check_in_at,
            company_id=visit.company_id,
            company_name=visit.company.name if visit.company else None,
        )
    )


@router.get("", response_model=VisitListResponse)
@limiter.limit("60/minute")
def list_visits(
    request: Request,
    db: DbSession,
    current_user: RequireSales,
    status_filter: Optional[Literal["active", "completed"]] = Query(None, alias="status"),
    page: int = Query(1),
    limit: int = Query(20),
):
    """The caller's visits, newest check-in first."""
    page, limit = clamp_page(page, limit)

    conditions = [Visit.user_id == current_user.id]
    if status_filter == "active":
        conditions.append(Visit.check_out_at.is_(None))
    elif status_filter == "completed":
        conditions.append(Visit.check_out_at.is_not(None))

    total = db.execute(select(func.count(Visit.id)).where(*conditions)).scalar_one()
    visits = db.execute(
        select(Visit)
        .where(*conditions)
        .order_by(Visit.check_in_at.desc(), Visit.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().unique().all()

    sales_counts: dict[int, int] = {}
    if visits:
        rows = db.execute(
            select(Sale.visit_id, func.count(Sale.id))
            .where(Sale.visit_id.in_([v.id for v in visits]))
            .group_by(Sale.visit_id)
        ).all()
        sales_counts = {visit_id: count for visit_id, count in rows}

    items = [_visit_detail(v, sales_counts.get(v.id, 0)) for v in visits]
    return JSONResponse(content=paginated_response("visits", items, total, page, limit))


@router.patch("/{visit_id}/associate-company", response_model=VisitDetailResponse)
@user_limiter.limit("30/minute")
def associate_company(
    request: Request,
    visit_id: int,
    body: AssociateCompanyRequest,
    db: DbSession,
    current_user: RequireSales,
):
    """Attach a company to a visit that was opened without one."""
    visit = db.get(Visit, visit_id)
    if visit is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Visit not found")
    if visit.user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to modify this visit",
        )

    try:
        visit = VisitSessionService(db).associate_company(visit, body.company_id)
    except VisitSessionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    sales_count = db.execute(
        select(func.count(Sale.id)).where(Sale.visit_id == visit.id)
    ).scalar_one()
    content = {
        "message": "Company associated with visit",
        "visit": _visit_detail(visit, sales_count),
    }
    db.commit()
    logger.info(f"Visit {visit_id} associated with company {body.company_id} by user {current_user.id}")
    return JSONResponse(content=content)
