"""SQLAlchemy models."""

from fieldsales.models.user import User
from fieldsales.models.company import Company, Technology
from fieldsales.models.visit import Visit
from fieldsales.models.sale import Sale
from fieldsales.models.operations import AuditLogEntry, IdempotencyRecord

__all__ = [
    "User",
    "Company",
    "Technology",
    "Visit",
    "Sale",
    "AuditLogEntry",
    "IdempotencyRecord",
]
