"""Pytest configuration and fixtures."""

import os

# Keep the app's own engine off the developer's database file
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-at-least-32-characters")

from typing import Generator

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fieldsales.core.rate_limit import limiter, user_limiter
from fieldsales.core.rbac import UserRole
from fieldsales.core.security import create_access_token, get_password_hash
from fieldsales.db.base import Base
from fieldsales.db.session import get_db
from fieldsales.main import app
# Import all models to ensure they're registered with Base.metadata
from fieldsales.models import *  # noqa: F401,F403
from fieldsales.models.company import Company, Technology
from fieldsales.models.user import User

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def _override_db(db_session: Session):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiters during tests to avoid flaky failures
    limiter.enabled = False
    user_limiter.enabled = False


def _restore():
    limiter.enabled = True
    user_limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    _override_db(db_session)
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    _restore()


@pytest_asyncio.fixture
async def asgi_http(db_session: Session):
    """Async httpx client talking to the app in-process, for the offline client."""
    _override_db(db_session)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as http:
        yield http
    _restore()


def _make_user(db_session: Session, email: str, role: UserRole, name: str, is_active: bool = True) -> User:
    user = User(
        email=email,
        password_hash=get_password_hash("testpass123"),
        role=role,
        name=name,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def token_for(user: User) -> str:
    return create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role.value}
    )


@pytest.fixture
def sales_user(db_session: Session) -> User:
    return _make_user(db_session, "agent@example.com", UserRole.SALES, "Field Agent")


@pytest.fixture
def other_sales_user(db_session: Session) -> User:
    return _make_user(db_session, "other@example.com", UserRole.SALES, "Other Agent")


@pytest.fixture
def admin_user(db_session: Session) -> User:
    return _make_user(db_session, "admin@example.com", UserRole.ADMIN, "Admin")


@pytest.fixture
def inactive_user(db_session: Session) -> User:
    return _make_user(db_session, "gone@example.com", UserRole.SALES, "Former Agent", is_active=False)


@pytest.fixture
def sales_token(sales_user: User) -> str:
    return token_for(sales_user)


@pytest.fixture
def auth_headers(sales_token: str) -> dict:
    """Authentication headers for the sales agent."""
    return {"Authorization": f"Bearer {sales_token}"}


@pytest.fixture
def other_headers(other_sales_user: User) -> dict:
    return {"Authorization": f"Bearer {token_for(other_sales_user)}"}


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return {"Authorization": f"Bearer {token_for(admin_user)}"}


@pytest.fixture
def company(db_session: Session) -> Company:
    company = Company(name="Padaria Central", address="Rua Augusta 120, Lisboa", nif="501234567")
    db_session.add(company)
    db_session.commit()
    db_session.refresh(company)
    return company


@pytest.fixture
def technology(db_session: Session) -> Technology:
    technology = Technology(name="Fibre Optic", active=True)
    db_session.add(technology)
    db_session.commit()
    db_session.refresh(technology)
    return technology


@pytest.fixture
def inactive_technology(db_session: Session) -> Technology:
    technology = Technology(name="ISDN", active=False)
    db_session.add(technology)
    db_session.commit()
    db_session.refresh(technology)
    return technology
