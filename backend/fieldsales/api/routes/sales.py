"""Sale routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import func, select

from fieldsales.core.rate_limit import limiter, user_limiter
from fieldsales.core.rbac import RequireSales
from fieldsales.core.responses import clamp_page, paginated_response
from fieldsales.db.session import DbSession
from fieldsales.models.company import Company, Technology
from fieldsales.models.sale import Sale
from fieldsales.models.visit import Visit
from fieldsales.schemas.sale import SaleCreate, SaleResponse
from fieldsales.services.audit_service import log_action
from fieldsales.services.idempotency_service import (
    IDEMPOTENCY_HEADER,
    find_replay,
    remember_response,
    replay_response,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _sale_body(sale: Sale) -> dict:
    return SaleResponse.model_validate(sale).model_dump(mode="json", by_alias=True)


@router.post("", status_code=status.HTTP_201_CREATED)
@user_limiter.limit("30/minute")
def create_sale(
    request: Request,
    body: SaleCreate,
    db: DbSession,
    current_user: RequireSales,
    idempotency_key: Optional[str] = Header(None, alias=IDEMPOTENCY_HEADER),
):
    """Record a sale, optionally attached to one of the caller's visits."""
    replay = find_replay(db, current_user.id, idempotency_key, "sales.create")
    if replay is not None:
        return replay_response(replay)

    technology = db.get(Technology, body.technology_id)
    if technology is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Technology not found")
    if not technology.active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Technology is not active")

    if db.get(Company, body.company_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")

    if body.visit_id is not None:
        visit = db.get(Visit, body.visit_id)
        if visit is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Visit not found")
        if visit.user_id != current_user.id and not current_user.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not allowed to attach a sale to this visit",
            )

    sale = Sale(
        user_id=current_user.id,
        company_id=body.company_id,
        technology_id=body.technology_id,
        visit_id=body.visit_id,
        value_cents=body.value_cents,
        notes=body.notes,
    )
    db.add(sale)
    db.flush()
    db.refresh(sale)

    log_action(
        db,
        "sale.create",
        entity_type="sale",
        entity_id=sale.id,
        user_id=current_user.id,
        details={
            "saleId": sale.id,
            "companyId": sale.company_id,
            "technologyId": sale.technology_id,
            "visitId": sale.visit_id,
            "valueCents": sale.value_cents,
        },
        request=request,
    )

    content = {"sale": _sale_body(sale)}
    remember_response(db, current_user.id, idempotency_key, "sales.create", status.HTTP_201_CREATED, content)
    db.commit()
    logger.info(f"Sale {sale.id} recorded by user {current_user.id}")
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=content)


@router.get("")
@limiter.limit("60/minute")
def list_sales(
    request: Request,
    db: DbSession,
    current_user: RequireSales,
    technology_id: Optional[int] = Query(None, alias="technologyId"),
    page: int = Query(1),
    limit: int = Query(20),
):
    """Sales users see their own sales; admins see everyone's."""
    page, limit = clamp_page(page, limit)

    conditions = []
    if not current_user.is_admin:
        conditions.append(Sale.user_id == current_user.id)
    if technology_id is not None:
        conditions.append(Sale.technology_id == technology_id)

    total = db.execute(select(func.count(Sale.id)).where(*conditions)).scalar_one()
    sales = db.execute(
        select(Sale)
        .where(*conditions)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().unique().all()

    return JSONResponse(
        content=paginated_response("sales", [_sale_body(s) for s in sales], total, page, limit)
    )
