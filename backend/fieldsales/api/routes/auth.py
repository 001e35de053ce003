"""Authentication routes."""

import logging

from fastapi import APIRouter, HTTPException, Request, status
from sqlalchemy import select

from fieldsales.core.rate_limit import limiter
from fieldsales.core.rbac import CurrentUser
from fieldsales.core.security import create_access_token, verify_password
from fieldsales.db.session import DbSession
from fieldsales.models.user import User
from fieldsales.schemas.auth import LoginRequest, Token, UserOut

logger = logging.getLogger("auth")

router = APIRouter()


@router.post("/login", response_model=Token)
@limiter.limit("5/minute")
def login(request: Request, login_request: LoginRequest, db: DbSession):
    """Authenticate user and return JWT token."""
    client_ip = request.client.host if request.client else "unknown"
    user = db.execute(
        select(User).where(User.email == login_request.email.lower())
    ).scalar_one_or_none()

    if not user or not verify_password(login_request.password, user.password_hash):
        logger.warning(f"Failed login attempt for email: {login_request.email} from IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        logger.warning(f"Login attempt for inactive user: {login_request.email} (ID: {user.id}) from IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is inactive",
        )

    access_token = create_access_token(
        data={
            "sub": str(user.id),
            "email": user.email,
            "role": user.role.value,
            "name": user.name or "",
        }
    )
    logger.info(f"User {user.id} logged in from IP: {client_ip}")
    return Token(access_token=access_token)


@router.get("/me", response_model=UserOut)
def get_me(current_user: CurrentUser, db: DbSession):
    """Return the authenticated user."""
    user = db.get(User, current_user.id)
    return UserOut(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role.value,
        is_active=user.is_active,
    )
