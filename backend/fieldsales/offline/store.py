"""
Durable local queue of pending events.

``PendingEventStore`` is the contract the controller and sync engine depend on.
``SqlitePendingEventStore`` keeps events in a local SQLite file so they survive
app restarts; ``InMemoryPendingEventStore`` is the drop-in used by tests.

Ordering for a drain is ascending ``timestamp``; events enqueued within the
same millisecond keep their enqueue order.
"""

import asyncio
import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import JSON, BigInteger, Integer, String, create_engine, delete, event, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from fieldsales.offline.events import EventType, PendingEvent, parse_event_type

logger = logging.getLogger(__name__)


class QueueStorageError(Exception):
    """The local queue could not be read or written."""


class PendingEventStore(Protocol):
    async def enqueue(self, event_type: EventType | str, payload: Dict[str, Any], timestamp: Optional[int] = None) -> str: ...

    async def list_all(self) -> List[PendingEvent]: ...

    async def get(self, event_id: str) -> Optional[PendingEvent]: ...

    async def remove(self, event_id: str) -> None: ...

    async def increment_retry(self, event_id: str) -> None: ...

    async def count(self) -> int: ...

    async def clear(self) -> None: ...


class InMemoryPendingEventStore:
    """Process-local store with the same semantics as the durable one."""

    def __init__(self):
        self._events: Dict[str, PendingEvent] = {}
        self._seq = 0

    @staticmethod
    def _copy(e: PendingEvent) -> PendingEvent:
        return PendingEvent(e.id, e.type, copy.deepcopy(e.payload), e.timestamp, e.retry_count, e.seq)

    async def enqueue(self, event_type, payload, timestamp=None) -> str:
        pending = PendingEvent.create(event_type, copy.deepcopy(payload), timestamp)
        self._seq += 1
        pending.seq = self._seq
        self._events[pending.id] = pending
        logger.debug(f"Queued {pending.type.value} event {pending.id}")
        return pending.id

    async def list_all(self) -> List[PendingEvent]:
        ordered = sorted(self._events.values(), key=lambda e: (e.timestamp, e.seq))
        # Copies, so callers cannot mutate queued state
        return [self._copy(e) for e in ordered]

    async def get(self, event_id: str) -> Optional[PendingEvent]:
        e = self._events.get(event_id)
        if e is None:
            return None
        return self._copy(e)

    async def remove(self, event_id: str) -> None:
        self._events.pop(event_id, None)

    async def increment_retry(self, event_id: str) -> None:
        pending = self._events.get(event_id)
        if pending is not None:
            pending.retry_count += 1

    async def count(self) -> int:
        return len(self._events)

    async def clear(self) -> None:
        self._events.clear()


class QueueBase(DeclarativeBase):
    """Declarative base for the on-device database, separate from the server schema."""

    pass


class PendingEventRow(QueueBase):
    __tablename__ = "pending_events"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[Any] = mapped_column(JSON, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def to_event(self) -> PendingEvent:
        return PendingEvent(
            id=self.id,
            type=parse_event_type(self.type),
            payload=self.payload,
            timestamp=self.timestamp,
            retry_count=self.retry_count,
            seq=self.seq,
        )


class SqlitePendingEventStore:
    """Queue persisted in a local SQLite file.

    SQLAlchemy calls are blocking, so each operation runs in a worker thread
    to keep the event loop free for UI work while the disk is touched.
    """

    def __init__(self, path: str):
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        engine_options = {"connect_args": {"check_same_thread": False}}
        if path == ":memory:":
            # One shared connection, or each worker thread would see its own empty database
            engine_options["poolclass"] = StaticPool
        self._engine = create_engine(f"sqlite:///{path}", **engine_options)

        @event.listens_for(self._engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            # Survive power loss between enqueue and the next sync
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=FULL")
            cursor.close()

        QueueBase.metadata.create_all(self._engine)
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)

    async def _run(self, operation: str, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as e:
            logger.error(f"Local queue {operation} failed: {e}")
            raise QueueStorageError(f"Local queue {operation} failed") from e

    def _enqueue(self, pending: PendingEvent) -> None:
        with self._sessions.begin() as session:
            session.add(PendingEventRow(
                id=pending.id,
                type=pending.type.value,
                payload=pending.payload,
                timestamp=pending.timestamp,
                retry_count=pending.retry_count,
            ))

    async def enqueue(self, event_type, payload, timestamp=None) -> str:
        pending = PendingEvent.create(event_type, payload, timestamp)
        await self._run("enqueue", self._enqueue, pending)
        logger.debug(f"Queued {pending.type.value} event {pending.id}")
        return pending.id

    def _list_all(self) -> List[PendingEvent]:
        with self._sessions() as session:
            rows = session.execute(
                select(PendingEventRow).order_by(PendingEventRow.timestamp, PendingEventRow.seq)
            ).scalars().all()
            return [row.to_event() for row in rows]

    async def list_all(self) -> List[PendingEvent]:
        return await self._run("read", self._list_all)

    def _get(self, event_id: str) -> Optional[PendingEvent]:
        with self._sessions() as session:
            row = session.execute(
                select(PendingEventRow).where(PendingEventRow.id == event_id)
            ).scalar_one_or_none()
            return row.to_event() if row is not None else None

    async def get(self, event_id: str) -> Optional[PendingEvent]:
        return await self._run("read", self._get, event_id)

    def _remove(self, event_id: str) -> None:
        with self._sessions.begin() as session:
            session.execute(delete(PendingEventRow).where(PendingEventRow.id == event_id))

    async def remove(self, event_id: str) -> None:
        await self._run("remove", self._remove, event_id)

    def _increment_retry(self, event_id: str) -> None:
        # Single UPDATE: atomic, and a no-op when the row is already gone
        with self._sessions.begin() as session:
            session.execute(
                update(PendingEventRow)
                .where(PendingEventRow.id == event_id)
                .values(retry_count=PendingEventRow.retry_count + 1)
            )

    async def increment_retry(self, event_id: str) -> None:
        await self._run("update", self._increment_retry, event_id)

    def _count(self) -> int:
        with self._sessions() as session:
            return session.execute(select(func.count(PendingEventRow.seq))).scalar_one()

    async def count(self) -> int:
        return await self._run("read", self._count)

    def _clear(self) -> None:
        with self._sessions.begin() as session:
            session.execute(delete(PendingEventRow))

    async def clear(self) -> None:
        await self._run("clear", self._clear)

    def close(self) -> None:
        self._engine.dispose()
