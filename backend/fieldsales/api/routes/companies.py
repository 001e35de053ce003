"""Company routes: search, create, detail."""

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import func, select

from fieldsales.core.rate_limit import limiter, user_limiter
from fieldsales.core.rbac import RequireSales
from fieldsales.core.responses import clamp_page, paginated_response
from fieldsales.db.session import DbSession
from fieldsales.models.company import Company
from fieldsales.models.sale import Sale
from fieldsales.models.visit import Visit
from fieldsales.schemas.company import CompanyCreate, CompanyListItem, CompanyResponse
from fieldsales.services.audit_service import log_action
from fieldsales.services.idempotency_service import (
    IDEMPOTENCY_HEADER,
    find_replay,
    remember_response,
    replay_response,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
@limiter.limit("60/minute")
def search_companies(
    request: Request,
    db: DbSession,
    current_user: RequireSales,
    query: Optional[str] = Query(None, max_length=255),
    page: int = Query(1),
    limit: int = Query(20),
):
    """Search companies by name substring (case-insensitive), ordered by name."""
    page, limit = clamp_page(page, limit)

    conditions = []
    if query and query.strip():
        conditions.append(Company.name.ilike(f"%{query.strip()}%"))

    total = db.execute(select(func.count(Company.id)).where(*conditions)).scalar_one()

    visits_count = (
        select(func.count(Visit.id)).where(Visit.company_id == Company.id).correlate(Company).scalar_subquery()
    )
    sales_count = (
        select(func.count(Sale.id)).where(Sale.company_id == Company.id).correlate(Company).scalar_subquery()
    )
    rows = db.execute(
        select(Company, visits_count, sales_count)
        .where(*conditions)
        .order_by(Company.name.asc(), Company.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    items = [
        CompanyListItem.model_validate(company)
        .model_copy(update={"visits_count": visits, "sales_count": sales})
        .model_dump(mode="json", by_alias=True)
        for company, visits, sales in rows
    ]
    return JSONResponse(content=paginated_response("companies", items, total, page, limit))


@router.post("", status_code=status.HTTP_201_CREATED)
@user_limiter.limit("30/minute")
def create_company(
    request: Request,
    body: CompanyCreate,
    db: DbSession,
    current_user: RequireSales,
    idempotency_key: Optional[str] = Header(None, alias=IDEMPOTENCY_HEADER),
):
    """Create a company. Names are unique regardless of case."""
    replay = find_replay(db, current_user.id, idempotency_key, "companies.create")
    if replay is not None:
        return replay_response(replay)

    existing = db.execute(
        select(Company).where(func.lower(Company.name) == body.name.lower())
    ).scalars().first()
    if existing is not None:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "detail": "A company with this name already exists.",
                "existingCompany": {"id": existing.id, "name": existing.name},
            },
        )

    company = Company(
        name=body.name,
        address=body.address,
        phone=body.phone,
        email=body.email,
        nif=body.nif,
    )
    db.add(company)
    db.flush()
    db.refresh(company)

    log_action(
        db,
        "company.create",
        entity_type="company",
        entity_id=company.id,
        user_id=current_user.id,
        details={"companyId": company.id, "companyName": company.name},
        request=request,
    )

    content = {"company": CompanyResponse.model_validate(company).model_dump(mode="json", by_alias=True)}
    remember_response(db, current_user.id, idempotency_key, "companies.create", status.HTTP_201_CREATED, content)
    db.commit()
    logger.info(f"Company {company.id} created by user {current_user.id}")
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=content)


@router.get("/{company_id}")
@limiter.limit("60/minute")
def get_company(request: Request, company_id: int, db: DbSession, current_user: RequireSales):
    company = db.get(Company, company_id)
    if company is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    return {"company": CompanyResponse.model_validate(company).model_dump(mode="json", by_alias=True)}
