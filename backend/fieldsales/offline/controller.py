"""
Offline-aware check-in/check-out controller.

The single place that decides, per user action, whether to call the server
now or queue the mutation for later, and that keeps the locally displayed
active visit consistent with the server.

Offline check-in shows a provisional visit at once. Its id is ``temp-<ms>``
and it remembers the id of the queued event that will create it on the
server. When the sync engine reports that event as synced, the provisional
visit is swapped for the server's; when the event is dropped, it is removed.
After every drain the active visit is re-read from the server.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from fieldsales.offline.api_client import ApiError, FieldSalesApiClient
from fieldsales.offline.bus import EVENT_DROPPED, EVENT_SYNCED, SYNC_COMPLETED, VISIT_UPDATED, EventBus
from fieldsales.offline.connectivity import ConnectivityMonitor
from fieldsales.offline.events import EventType, now_ms
from fieldsales.offline.geolocation import GeolocationProvider, JustificationPrompt, LocationFix, acquire_location
from fieldsales.offline.store import PendingEventStore
from fieldsales.offline.sync_engine import DroppedEvent, SyncedEvent, SyncEngine, SyncResult

logger = logging.getLogger(__name__)

PROVISIONAL_PREFIX = "temp-"

CHECKIN_QUEUED_MESSAGE = "Check-in saved offline. It will sync when you are back online."
CHECKOUT_QUEUED_MESSAGE = "Check-out saved offline. It will sync when you are back online."
COMPANY_QUEUED_MESSAGE = "Company saved offline. It will sync when you are back online."
SALE_QUEUED_MESSAGE = "Sale saved offline. It will sync when you are back online."


class LocalVisitStateError(Exception):
    """The action contradicts the locally known visit state."""


def is_provisional_id(visit_id: Any) -> bool:
    return isinstance(visit_id, str) and visit_id.startswith(PROVISIONAL_PREFIX)


def _parse_timestamp(value: Union[str, datetime, None]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class ActiveVisit:
    id: Union[int, str]
    check_in_at: datetime
    company_id: Optional[int] = None
    company_name: Optional[str] = None
    # Queued check-in event that will create this visit on the server
    pending_event_id: Optional[str] = None

    @property
    def provisional(self) -> bool:
        return self.pending_event_id is not None or is_provisional_id(self.id)

    def elapsed_seconds(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        return max(0, int((now - self.check_in_at).total_seconds()))

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ActiveVisit":
        return cls(
            id=data["id"],
            check_in_at=_parse_timestamp(data.get("checkInAt")),
            company_id=data.get("companyId"),
            company_name=data.get("companyName"),
        )


@dataclass
class ActionOutcome:
    queued: bool
    visit: Optional[ActiveVisit] = None
    message: str = ""
    data: Any = None


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    # Absent fields are omitted from the request body, not sent as null
    return {k: v for k, v in payload.items() if v is not None}


class CheckinController:
    def __init__(
        self,
        store: PendingEventStore,
        api: FieldSalesApiClient,
        monitor: ConnectivityMonitor,
        prompt: JustificationPrompt,
        geolocation: Optional[GeolocationProvider] = None,
        bus: Optional[EventBus] = None,
        sync_engine: Optional[SyncEngine] = None,
        geolocation_timeout_seconds: float = 15.0,
        geolocation_high_accuracy: bool = True,
        active_visit_refresh_seconds: float = 30.0,
    ):
        self.store = store
        self.api = api
        self.monitor = monitor
        self.prompt = prompt
        self.geolocation = geolocation
        self.bus = bus or (sync_engine.bus if sync_engine else EventBus())
        self.sync_engine = sync_engine
        self.geolocation_timeout_seconds = geolocation_timeout_seconds
        self.geolocation_high_accuracy = geolocation_high_accuracy
        self.active_visit_refresh_seconds = active_visit_refresh_seconds

        self.active_visit: Optional[ActiveVisit] = None
        # Offline check-out awaiting sync; the server still has the visit open until then
        self._pending_checkout_event_id: Optional[str] = None
        self._refresh_task: Optional[asyncio.Task] = None

        self._unsubscribe = [
            self.bus.subscribe(EVENT_SYNCED, self._on_event_synced),
            self.bus.subscribe(EVENT_DROPPED, self._on_event_dropped),
            self.bus.subscribe(SYNC_COMPLETED, self._on_sync_completed),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    async def _set_active_visit(self, visit: Optional[ActiveVisit]) -> None:
        self.active_visit = visit
        await self.bus.publish(VISIT_UPDATED, visit)

    async def _locate(self) -> LocationFix:
        return await acquire_location(
            self.geolocation,
            self.prompt,
            timeout_seconds=self.geolocation_timeout_seconds,
            high_accuracy=self.geolocation_high_accuracy,
        )

    async def _flush_queue_first(self) -> None:
        # Queued mutations go out before a direct call so server order matches action order
        if self.sync_engine is None:
            return
        await self.sync_engine.wait_idle()
        if await self.store.count() > 0:
            result = await self.sync_engine.request_sync()
            if result.skipped:
                await self.sync_engine.wait_idle()

    async def pending_count(self) -> int:
        return await self.store.count()

    async def handle_checkin(self, company_id: Optional[int] = None, company_name: Optional[str] = None) -> ActionOutcome:
        """Check in, directly when online or queued when offline.

        Raises:
            CheckinAborted: no GPS and no justification.
            LocalVisitStateError: offline with a visit already shown as open.
            ApiError: the server rejected an online check-in.
        """
        fix = await self._locate()
        payload = _compact({
            "companyId": company_id,
            "checkInLat": fix.lat,
            "checkInLng": fix.lng,
            "noGpsReason": fix.no_gps_reason,
        })

        if not self.monitor.is_online():
            if self.active_visit is not None:
                raise LocalVisitStateError("There is already an active visit. Check out first.")
            event_id = await self.store.enqueue(EventType.CHECKIN, payload)
            ms = now_ms()
            visit = ActiveVisit(
                id=f"{PROVISIONAL_PREFIX}{ms}",
                check_in_at=datetime.fromtimestamp(ms / 1000, tz=timezone.utc),
                company_id=company_id,
                company_name=company_name,
                pending_event_id=event_id,
            )
            await self._set_active_visit(visit)
            logger.info(f"Check-in queued offline as {event_id}")
            return ActionOutcome(queued=True, visit=visit, message=CHECKIN_QUEUED_MESSAGE)

        await self._flush_queue_first()
        body = await self.api.checkin(payload)
        visit = ActiveVisit.from_api(body["visit"])
        visit.company_name = company_name
        await self._set_active_visit(visit)
        return ActionOutcome(queued=False, visit=visit, message="Checked in.", data=body)

    async def handle_checkout(self) -> ActionOutcome:
        """Check out, directly when online or queued when offline.

        Raises:
            CheckinAborted: no GPS and no justification.
            LocalVisitStateError: offline with no visit shown as open.
            ApiError: the server rejected an online check-out.
        """
        fix = await self._locate()
        payload = _compact({
            "checkOutLat": fix.lat,
            "checkOutLng": fix.lng,
            "noGpsReason": fix.no_gps_reason,
        })

        if not self.monitor.is_online():
            if self.active_visit is None:
                raise LocalVisitStateError("There is no active visit to check out.")
            event_id = await self.store.enqueue(EventType.CHECKOUT, payload)
            self._pending_checkout_event_id = event_id
            await self._set_active_visit(None)
            logger.info(f"Check-out queued offline as {event_id}")
            return ActionOutcome(queued=True, message=CHECKOUT_QUEUED_MESSAGE)

        await self._flush_queue_first()
        body = await self.api.checkout(payload)
        await self._set_active_visit(None)
        return ActionOutcome(queued=False, message="Checked out.", data=body)

    async def handle_create_company(self, payload: Dict[str, Any]) -> ActionOutcome:
        if not self.monitor.is_online():
            event_id = await self.store.enqueue(EventType.COMPANY, _compact(payload))
            logger.info(f"Company creation queued offline as {event_id}")
            return ActionOutcome(queued=True, message=COMPANY_QUEUED_MESSAGE)

        await self._flush_queue_first()
        body = await self.api.create_company(_compact(payload))
        return ActionOutcome(queued=False, message="Company created.", data=body)

    async def handle_create_sale(self, payload: Dict[str, Any]) -> ActionOutcome:
        """Record a sale. A provisional visit id is never sent to the server."""
        payload = _compact(payload)
        if is_provisional_id(payload.get("visitId")):
            payload.pop("visitId")

        if not self.monitor.is_online():
            event_id = await self.store.enqueue(EventType.SALE, payload)
            logger.info(f"Sale queued offline as {event_id}")
            return ActionOutcome(queued=True, message=SALE_QUEUED_MESSAGE)

        await self._flush_queue_first()
        body = await self.api.create_sale(payload)
        return ActionOutcome(queued=False, message="Sale recorded.", data=body)

    async def refresh_active_visit(self) -> Optional[ActiveVisit]:
        """Re-read the active visit from the server, keeping optimistic state
        whose queued event has not been sent yet."""
        if not self.monitor.is_online():
            return self.active_visit
        try:
            data = await self.api.get_active_visit()
        except ApiError as e:
            logger.warning(f"Could not refresh active visit: {e}")
            return self.active_visit

        current = self.active_visit
        if current is not None and current.pending_event_id is not None:
            if await self.store.get(current.pending_event_id) is not None:
                return current

        if self._pending_checkout_event_id is not None:
            if await self.store.get(self._pending_checkout_event_id) is not None:
                return self.active_visit
            self._pending_checkout_event_id = None

        visit = ActiveVisit.from_api(data) if data else None
        if visit != current:
            await self._set_active_visit(visit)
        return self.active_visit

    async def _on_event_synced(self, message: SyncedEvent) -> None:
        current = self.active_visit
        if current is None or current.pending_event_id != message.event.id:
            return
        server_visit = (message.response or {}).get("visit")
        if not server_visit:
            return
        confirmed = replace(
            ActiveVisit.from_api(server_visit),
            company_name=current.company_name,
        )
        logger.info(f"Provisional visit {current.id} confirmed as visit {confirmed.id}")
        await self._set_active_visit(confirmed)

    async def _on_event_dropped(self, message: DroppedEvent) -> None:
        current = self.active_visit
        if current is not None and current.pending_event_id == message.event.id:
            logger.warning(f"Provisional visit {current.id} discarded: {message.error.error}")
            await self._set_active_visit(None)
        if message.event.id == self._pending_checkout_event_id:
            self._pending_checkout_event_id = None

    async def _on_sync_completed(self, result: SyncResult) -> None:
        if result.skipped:
            return
        await self.refresh_active_visit()

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.active_visit_refresh_seconds)
            await self.refresh_active_visit()

    def start(self) -> None:
        """Start the periodic active-visit refresh."""
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None
