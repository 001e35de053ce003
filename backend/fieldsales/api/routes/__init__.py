"""API routes."""

import logging
from fastapi import APIRouter

from fieldsales.api.routes import auth, companies, sales, technologies, visits

logger = logging.getLogger(__name__)

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(visits.router, prefix="/visits", tags=["visits"])
api_router.include_router(companies.router, prefix="/companies", tags=["companies"])
api_router.include_router(sales.router, prefix="/sales", tags=["sales"])
api_router.include_router(technologies.router, prefix="/technologies", tags=["technologies"])
