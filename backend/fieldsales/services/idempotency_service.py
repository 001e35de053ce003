"""
Idempotent request replay.

The offline sync engine sends every queued mutation with an ``Idempotency-Key``
header (the pending event id). If the server commits the mutation but the
response is lost, the client retries with the same key; the stored response is
replayed instead of applying the mutation twice.
"""

import logging
from typing import Any, Optional

from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fieldsales.models.operations import IdempotencyRecord

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
MAX_KEY_LENGTH = 128


def normalize_key(key: Optional[str]) -> Optional[str]:
    if key is None:
        return None
    key = key.strip()
    if not key:
        return None
    return key[:MAX_KEY_LENGTH]


def find_replay(db: Session, user_id: int, key: Optional[str], endpoint: str) -> Optional[IdempotencyRecord]:
    """Return the stored response for (user, key), or None.

    A key reused against a different endpoint is not a replay; the caller
    treats the request as new.
    """
    key = normalize_key(key)
    if key is None:
        return None
    record = db.execute(
        select(IdempotencyRecord).where(
            IdempotencyRecord.user_id == user_id,
            IdempotencyRecord.key == key,
        )
    ).scalar_one_or_none()
    if record is None:
        return None
    if record.endpoint != endpoint:
        logger.warning(
            f"Idempotency key {key} reused by user {user_id} on {endpoint} "
            f"(originally {record.endpoint})"
        )
        return None
    logger.info(f"Replaying stored response for {endpoint} key={key} user={user_id}")
    return record


def remember_response(
    db: Session,
    user_id: int,
    key: Optional[str],
    endpoint: str,
    status_code: int,
    body: Any,
) -> None:
    """Store the response in the caller's transaction so it commits with the mutation."""
    key = normalize_key(key)
    if key is None:
        return
    try:
        with db.begin_nested():
            db.add(IdempotencyRecord(
                user_id=user_id,
                key=key,
                endpoint=endpoint,
                status_code=status_code,
                response_body=body,
            ))
    except IntegrityError:
        logger.warning(f"Idempotency key {key} already stored for user {user_id}")


def replay_response(record: IdempotencyRecord) -> JSONResponse:
    return JSONResponse(
        status_code=record.status_code,
        content=record.response_body,
        headers={"Idempotent-Replay": "true"},
    )
