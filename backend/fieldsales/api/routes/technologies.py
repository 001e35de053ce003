"""Technology catalogue routes."""

import logging

from fastapi import APIRouter, HTTPException, Query, Request, status
from sqlalchemy import func, select

from fieldsales.core.rate_limit import limiter
from fieldsales.core.rbac import RequireAdmin, RequireSales
from fieldsales.db.session import DbSession
from fieldsales.models.company import Technology
from fieldsales.schemas.company import TechnologyCreate, TechnologyResponse, TechnologyUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


def _name_taken(db, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(Technology.id).where(func.lower(Technology.name) == name.lower())
    if exclude_id is not None:
        stmt = stmt.where(Technology.id != exclude_id)
    return db.execute(stmt).first() is not None


@router.get("", response_model=list[TechnologyResponse])
@limiter.limit("60/minute")
def list_technologies(
    request: Request,
    db: DbSession,
    current_user: RequireSales,
    include_inactive: bool = Query(False, alias="includeInactive"),
):
    """Active technologies by name; admins may include inactive ones."""
    stmt = select(Technology).order_by(Technology.name.asc())
    if not (include_inactive and current_user.is_admin):
        stmt = stmt.where(Technology.active.is_(True))
    return db.execute(stmt).scalars().all()


@router.post("", response_model=TechnologyResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_technology(request: Request, body: TechnologyCreate, db: DbSession, current_user: RequireAdmin):
    name = body.name.strip()
    if _name_taken(db, name):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A technology with this name already exists")

    technology = Technology(name=name, description=body.description, active=body.active)
    db.add(technology)
    db.commit()
    db.refresh(technology)
    logger.info(f"Technology {technology.id} created by admin {current_user.id}")
    return technology


@router.patch("/{technology_id}", response_model=TechnologyResponse)
@limiter.limit("30/minute")
def update_technology(
    request: Request,
    technology_id: int,
    body: TechnologyUpdate,
    db: DbSession,
    current_user: RequireAdmin,
):
    technology = db.get(Technology, technology_id)
    if technology is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Technology not found")

    changes = body.model_dump(exclude_unset=True)
    if "name" in changes and changes["name"] is not None:
        changes["name"] = changes["name"].strip()
        if _name_taken(db, changes["name"], exclude_id=technology.id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="A technology with this name already exists",
            )
    for field, value in changes.items():
        if value is not None:
            setattr(technology, field, value)

    db.commit()
    db.refresh(technology)
    return technology
