"""Audit logging service.

Writes an audit trail row for business events (check-in, check-out, company
and sale creation). Auditing is best effort: a failure to write the entry is
logged and never fails the request that triggered it.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from fieldsales.models.operations import AuditLogEntry

logger = logging.getLogger("audit")


def request_origin(request: Optional[Request]) -> tuple[str, str]:
    """Return (ip_address, user_agent) for a request, preferring X-Forwarded-For."""
    if request is None:
        return "", ""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else ""
    return ip, request.headers.get("User-Agent", "")[:255]


def log_action(
    db: Session,
    action: str,
    entity_type: str = "",
    entity_id: Any = "",
    user_id: Optional[int] = None,
    details: Optional[dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> None:
    """Write an audit log entry in the caller's transaction.

    Args:
        db: The request's session. The entry is committed with it.
        action: Dotted action name, e.g. ``visit.checkin``.
        entity_type: Type of entity affected (visit, company, sale).
        entity_id: ID of the affected entity.
        user_id: ID of the user performing the action.
        details: Additional context (coordinates, GPS justification, ...).
        request: Used for the client IP address and user agent.
    """
    ip_address, user_agent = request_origin(request)
    try:
        with db.begin_nested():
            db.add(AuditLogEntry(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id not in (None, "") else "",
                details=details or {},
                ip_address=ip_address,
                user_agent=user_agent,
                created_at=datetime.now(timezone.utc),
            ))
    except Exception:
        logger.exception(f"Failed to write audit log entry for {action}")
        return

    logger.info(f"{action} {entity_type}:{entity_id} by user {user_id}")
