"""Role checks for the field-sales API.

Two roles: ``sales`` (field agents) and ``admin`` (back office). Admins pass
every sales gate.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from fieldsales.core.security import decode_access_token
from fieldsales.db.session import DbSession


class UserRole(str, Enum):
    ADMIN = "admin"
    SALES = "sales"


# admin > sales
ROLE_HIERARCHY = {
    UserRole.ADMIN: 2,
    UserRole.SALES: 1,
}


@dataclass
class TokenData:
    """The caller, as established from a bearer token and the users table."""

    id: int
    email: str
    role: UserRole
    name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(request: Request, db: DbSession) -> TokenData:
    """Resolve the Bearer token. Deactivated agents are rejected even with a valid token."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    payload = decode_access_token(token) if scheme == "Bearer" and token else None
    if payload is None:
        raise _unauthorized("Not authenticated")

    try:
        user_id = int(payload["sub"])
        role = UserRole(payload["role"])
    except (KeyError, TypeError, ValueError):
        raise _unauthorized("Invalid token payload")

    from fieldsales.models.user import User
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise _unauthorized("User account is disabled")

    return TokenData(id=user.id, email=user.email, role=role, name=user.name or "")


def require_role(minimum_role: UserRole):
    """Dependency factory: the caller's role must be at least ``minimum_role``."""

    async def role_checker(
        current_user: Annotated[TokenData, Depends(get_current_user)]
    ) -> TokenData:
        if ROLE_HIERARCHY.get(current_user.role, 0) < ROLE_HIERARCHY[minimum_role]:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role {minimum_role.value} or higher",
            )
        return current_user

    return role_checker


RequireAdmin = Annotated[TokenData, Depends(require_role(UserRole.ADMIN))]
RequireSales = Annotated[TokenData, Depends(require_role(UserRole.SALES))]
CurrentUser = Annotated[TokenData, Depends(get_current_user)]
