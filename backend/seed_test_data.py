"""Seed demo data for local development.

Creates an admin and a sales agent, the technology catalogue and a few
client companies so the check-in flow can be tried end to end.

Usage:
    cd backend
    python seed_test_data.py

Credentials can be overridden with DEV_ADMIN_EMAIL / DEV_ADMIN_PASSWORD and
DEV_SALES_EMAIL / DEV_SALES_PASSWORD.
"""

import logging
import os

from sqlalchemy import select

from fieldsales.core.rbac import UserRole
from fieldsales.core.security import get_password_hash
from fieldsales.db.base import Base
from fieldsales.db.session import SessionLocal, engine
from fieldsales.models import Company, Technology, User

logger = logging.getLogger("seed")

TECHNOLOGIES = [
    "Fibre Optic",
    "5G Mobile Internet",
    "VoIP Landline",
    "Virtual PBX",
    "Cloud Services",
]

COMPANIES = [
    {"name": "Padaria Central", "address": "Rua Augusta 120, Lisboa", "nif": "501234567"},
    {"name": "Oficina Mecânica Silva", "address": "Av. da República 45, Porto", "phone": "+351 220 000 111"},
    {"name": "Clínica Dentária Sorriso", "address": "Rua do Brasil 8, Coimbra", "email": "geral@sorriso.example"},
]


def _ensure_user(db, email: str, password: str, role: UserRole, name: str) -> None:
    email = email.lower()
    if db.execute(select(User).where(User.email == email)).scalar_one_or_none():
        return
    db.add(User(email=email, password_hash=get_password_hash(password), role=role, name=name, is_active=True))
    logger.info(f"Created {role.value} user {email}")


def _seed_all(db) -> None:
    _ensure_user(
        db,
        os.environ.get("DEV_ADMIN_EMAIL", "admin@example.com"),
        os.environ.get("DEV_ADMIN_PASSWORD", "admin123"),
        UserRole.ADMIN,
        "Admin",
    )
    _ensure_user(
        db,
        os.environ.get("DEV_SALES_EMAIL", "agent@example.com"),
        os.environ.get("DEV_SALES_PASSWORD", "agent123"),
        UserRole.SALES,
        "Field Agent",
    )

    for name in TECHNOLOGIES:
        if not db.execute(select(Technology).where(Technology.name == name)).scalar_one_or_none():
            db.add(Technology(name=name, active=True))

    for data in COMPANIES:
        if not db.execute(select(Company).where(Company.name == data["name"])).scalar_one_or_none():
            db.add(Company(**data))


def seed() -> None:
    """Insert demo data, skipping rows that already exist."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        _seed_all(db)
        db.commit()
        logger.info("Seed data committed successfully.")
    except Exception:
        db.rollback()
        logger.exception("Error seeding data")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    seed()
