"""
Sync engine: drains the local queue against the server.

A drain lists the queue once and sends each event sequentially, oldest first,
so a queued check-out never overtakes its check-in. Each event gets exactly
one attempt per drain:

- success: removed from the queue and announced on ``event.synced``
- transient failure: ``retry_count`` incremented, kept for the next drain
- permanent/validation failure: dropped at once (``drop_permanent_failures``),
  or counted against the same retry ceiling when that option is off
- already at the ceiling: dropped without a request

Every request carries the event id as its Idempotency-Key, so a replay whose
response was lost is answered from the server's stored response.

Only one drain runs at a time. A trigger that arrives mid-drain is ignored
and gets a ``skipped`` result. Callers that must not overtake the queue wait
for the running drain with ``wait_idle()``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fieldsales.offline.api_client import ApiError, ErrorKind, FieldSalesApiClient
from fieldsales.offline.bus import EVENT_DROPPED, EVENT_SYNCED, SYNC_COMPLETED, EventBus
from fieldsales.offline.connectivity import ConnectivityMonitor
from fieldsales.offline.events import EventType, PendingEvent
from fieldsales.offline.store import PendingEventStore, QueueStorageError

logger = logging.getLogger(__name__)

MAX_RETRIES_MESSAGE = "Max retries exceeded"


@dataclass
class SyncError:
    event_id: str
    error: str
    kind: str
    dropped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"eventId": self.event_id, "error": self.error, "kind": self.kind, "dropped": self.dropped}


@dataclass
class SyncResult:
    processed: int = 0
    failed: int = 0
    errors: List[SyncError] = field(default_factory=list)
    skipped: bool = False

    @property
    def success(self) -> bool:
        return not self.skipped and self.failed == 0 and not self.errors

    @property
    def dropped(self) -> int:
        return sum(1 for e in self.errors if e.dropped)

    def summary(self) -> str:
        """Short text for the sync toast, e.g. ``3 synced, 1 failed``."""
        if self.skipped:
            return "Sync already in progress"
        text = f"{self.processed} synced"
        if self.failed:
            text += f", {self.failed} failed"
        return text


@dataclass
class SyncedEvent:
    """Message published on ``event.synced``."""

    event: PendingEvent
    response: Any


@dataclass
class DroppedEvent:
    """Message published on ``event.dropped``."""

    event: PendingEvent
    error: SyncError


class SyncEngine:
    def __init__(
        self,
        store: PendingEventStore,
        api: FieldSalesApiClient,
        bus: Optional[EventBus] = None,
        max_retries: int = 3,
        drop_permanent_failures: bool = True,
    ):
        self.store = store
        self.api = api
        self.bus = bus or EventBus()
        self.max_retries = max_retries
        self.drop_permanent_failures = drop_permanent_failures
        self._syncing = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._dispatch: Dict[EventType, Callable[..., Awaitable[Any]]] = {
            EventType.CHECKIN: api.checkin,
            EventType.CHECKOUT: api.checkout,
            EventType.COMPANY: api.create_company,
            EventType.SALE: api.create_sale,
        }

    @classmethod
    def from_settings(cls, settings, store, api, bus=None) -> "SyncEngine":
        return cls(
            store,
            api,
            bus=bus,
            max_retries=settings.max_retries,
            drop_permanent_failures=settings.drop_permanent_failures,
        )

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def attach(self, monitor: ConnectivityMonitor) -> Callable[[], None]:
        """Drain whenever ``monitor`` reports a transition to online."""

        def on_change(online: bool):
            if online:
                return self.sync_pending_events()
            return None

        return monitor.subscribe(on_change)

    async def request_sync(self) -> SyncResult:
        """User-initiated sync; shares the single-flight guard with reconnection."""
        return await self.sync_pending_events()

    async def wait_idle(self) -> None:
        """Return once no drain is running."""
        await self._idle.wait()

    async def sync_pending_events(self) -> SyncResult:
        """Run one drain. Never raises; failures are reported in the result."""
        if self._syncing:
            logger.debug("Sync already running, ignoring trigger")
            return SyncResult(skipped=True)

        self._syncing = True
        self._idle.clear()
        try:
            result = await self._drain()
        finally:
            self._syncing = False
            self._idle.set()

        if result.processed or result.failed or result.errors:
            logger.info(f"Sync finished: {result.summary()}")
        await self.bus.publish(SYNC_COMPLETED, result)
        return result

    async def _drain(self) -> SyncResult:
        result = SyncResult()
        try:
            events = await self.store.list_all()
        except QueueStorageError as e:
            logger.error(f"Could not read the pending queue: {e}")
            result.failed += 1
            result.errors.append(SyncError("", str(e), ErrorKind.LOCAL.value))
            return result

        if not events:
            return result

        logger.info(f"Sync started: {len(events)} pending event(s)")
        for event in events:
            try:
                await self._process(event, result)
            except Exception as e:
                # Storage failure while recording the outcome; the event stays queued
                logger.exception(f"Could not record outcome for event {event.id}")
                result.failed += 1
                result.errors.append(SyncError(event.id, str(e), ErrorKind.LOCAL.value))
        return result

    async def _drop(self, event: PendingEvent, result: SyncResult, message: str, kind: str) -> None:
        await self.store.remove(event.id)
        error = SyncError(event.id, message, kind, dropped=True)
        result.failed += 1
        result.errors.append(error)
        logger.warning(f"Dropped {event.type} event {event.id} ({kind}): {message}")
        await self.bus.publish(EVENT_DROPPED, DroppedEvent(event, error))

    async def _process(self, event: PendingEvent, result: SyncResult) -> None:
        if not isinstance(event.type, EventType) or not isinstance(event.payload, dict):
            await self._drop(event, result, f"Malformed event of type {event.type!r}", ErrorKind.LOCAL.value)
            return

        if event.retry_count >= self.max_retries:
            await self._drop(event, result, MAX_RETRIES_MESSAGE, ErrorKind.TRANSIENT.value)
            return

        send = self._dispatch[event.type]
        try:
            response = await send(event.payload, idempotency_key=event.id)
        except ApiError as e:
            if e.kind != ErrorKind.TRANSIENT and self.drop_permanent_failures:
                await self._drop(event, result, e.message, e.kind.value)
                return
            await self.store.increment_retry(event.id)
            result.failed += 1
            result.errors.append(SyncError(event.id, e.message, e.kind.value))
            logger.info(
                f"{event.type.value} event {event.id} failed "
                f"(attempt {event.retry_count + 1}/{self.max_retries}): {e}"
            )
            return

        await self.store.remove(event.id)
        result.processed += 1
        logger.debug(f"Synced {event.type.value} event {event.id}")
        await self.bus.publish(EVENT_SYNCED, SyncedEvent(event, response))
