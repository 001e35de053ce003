"""End-to-end tests for the offline-aware controller against the real API."""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select

from fieldsales.main import app
from fieldsales.models.sale import Sale
from fieldsales.models.visit import Visit
from fieldsales.offline.api_client import ApiError, FieldSalesApiClient
from fieldsales.offline.bus import VISIT_UPDATED
from fieldsales.offline.connectivity import ConnectivityMonitor
from fieldsales.offline.controller import (
    CHECKIN_QUEUED_MESSAGE,
    CheckinController,
    LocalVisitStateError,
    is_provisional_id,
)
from fieldsales.offline.events import EventType
from fieldsales.offline.geolocation import CheckinAborted, Position
from fieldsales.offline.store import InMemoryPendingEventStore
from fieldsales.offline.sync_engine import SyncEngine


class FixedPrompt:
    def __init__(self, answer):
        self.answer = answer

    async def ask(self, question):
        return self.answer


class FixedProvider:
    async def get_position(self, high_accuracy=True):
        return Position(38.7223, -9.1393)


class HeldCheckinTransport(httpx.AsyncBaseTransport):
    """Forwards to the app, holding check-ins until released."""

    def __init__(self):
        self.inner = httpx.ASGITransport(app=app)
        self.held = asyncio.Event()
        self.release = asyncio.Event()
        self.log = []

    async def handle_async_request(self, request):
        if request.url.path.endswith("/visits/checkin"):
            self.held.set()
            await self.release.wait()
        response = await self.inner.handle_async_request(request)
        if request.method == "POST":
            self.log.append((request.url.path, response.status_code))
        return response


class Harness:
    def __init__(self, http, token, online, prompt_answer="sem sinal", geolocation=None):
        self.store = InMemoryPendingEventStore()
        self.api = FieldSalesApiClient(http, token=token)
        self.monitor = ConnectivityMonitor(online=online)
        self.engine = SyncEngine(self.store, self.api)
        self.engine.attach(self.monitor)
        self.prompt = FixedPrompt(prompt_answer)
        self.controller = CheckinController(
            self.store,
            self.api,
            self.monitor,
            self.prompt,
            geolocation=geolocation,
            sync_engine=self.engine,
        )
        self.visit_updates = []
        self.engine.bus.subscribe(VISIT_UPDATED, self.visit_updates.append)

    async def reconnect(self):
        self.monitor.set_online(True)
        await self.monitor.wait_idle()


@pytest_asyncio.fixture
async def offline(asgi_http, sales_token):
    harness = Harness(asgi_http, sales_token, online=False)
    yield harness
    harness.controller.close()


@pytest_asyncio.fixture
async def online(asgi_http, sales_token):
    harness = Harness(asgi_http, sales_token, online=True, geolocation=FixedProvider())
    yield harness
    harness.controller.close()


def _open_visits(db_session, user_id):
    db_session.expire_all()
    return db_session.execute(
        select(Visit).where(Visit.user_id == user_id, Visit.check_out_at.is_(None))
    ).scalars().all()


@pytest.mark.asyncio
class TestOfflineCheckin:
    async def test_checkin_queued_with_provisional_visit(self, offline):
        outcome = await offline.controller.handle_checkin(company_name="Padaria Central")

        assert outcome.queued
        assert outcome.message == CHECKIN_QUEUED_MESSAGE
        visit = offline.controller.active_visit
        assert is_provisional_id(visit.id)
        assert visit.provisional
        assert visit.company_name == "Padaria Central"
        assert offline.visit_updates == [visit]

        [pending] = await offline.store.list_all()
        assert pending.type is EventType.CHECKIN
        assert pending.payload == {"noGpsReason": "sem sinal"}
        assert visit.pending_event_id == pending.id

    async def test_second_offline_checkin_rejected_locally(self, offline):
        await offline.controller.handle_checkin()
        with pytest.raises(LocalVisitStateError):
            await offline.controller.handle_checkin()
        assert await offline.controller.pending_count() == 1

    async def test_offline_checkout_without_visit_rejected(self, offline):
        with pytest.raises(LocalVisitStateError):
            await offline.controller.handle_checkout()
        assert await offline.store.count() == 0

    async def test_declined_justification_queues_nothing(self, offline):
        offline.prompt.answer = None
        with pytest.raises(CheckinAborted):
            await offline.controller.handle_checkin()
        assert offline.controller.active_visit is None
        assert await offline.store.count() == 0

    async def test_short_justification_queues_nothing(self, offline):
        offline.prompt.answer = "ab"
        with pytest.raises(CheckinAborted):
            await offline.controller.handle_checkin()
        assert await offline.store.count() == 0


@pytest.mark.asyncio
class TestReconciliation:
    async def test_reconnect_replaces_provisional_with_server_visit(self, offline, db_session, sales_user):
        await offline.controller.handle_checkin()

        await offline.reconnect()

        visit = offline.controller.active_visit
        assert isinstance(visit.id, int)
        assert not visit.provisional
        assert await offline.store.count() == 0
        [server_visit] = _open_visits(db_session, sales_user.id)
        assert server_visit.id == visit.id
        assert server_visit.check_in_no_gps_reason == "sem sinal"

    async def test_checkin_and_checkout_both_synced(self, offline, db_session, sales_user):
        await offline.controller.handle_checkin()
        outcome = await offline.controller.handle_checkout()
        assert outcome.queued
        assert offline.controller.active_visit is None
        assert await offline.store.count() == 2

        await offline.reconnect()

        assert await offline.store.count() == 0
        assert offline.controller.active_visit is None
        assert _open_visits(db_session, sales_user.id) == []
        visit = db_session.execute(select(Visit).where(Visit.user_id == sales_user.id)).scalar_one()
        assert visit.check_out_no_gps_reason == "sem sinal"
        assert visit.duration_seconds is not None

    async def test_conflicting_checkin_dropped_and_server_visit_shown(self, offline, db_session, sales_user):
        existing = Visit(
            user_id=sales_user.id,
            check_in_at=datetime.now(timezone.utc),
            check_in_lat=38.7,
            check_in_lng=-9.1,
        )
        db_session.add(existing)
        db_session.commit()

        await offline.controller.handle_checkin()
        result_messages = []
        offline.engine.bus.subscribe("event.dropped", result_messages.append)

        await offline.reconnect()

        assert len(result_messages) == 1
        assert result_messages[0].error.kind == "permanent"
        assert await offline.store.count() == 0
        assert offline.controller.active_visit.id == existing.id
        assert len(_open_visits(db_session, sales_user.id)) == 1

    async def test_sale_never_sends_provisional_visit_id(self, offline, db_session, company, technology):
        await offline.controller.handle_checkin()
        temp_id = offline.controller.active_visit.id

        outcome = await offline.controller.handle_create_sale({
            "visitId": temp_id,
            "companyId": company.id,
            "technologyId": technology.id,
            "notes": None,
        })
        assert outcome.queued
        sale_event = (await offline.store.list_all())[-1]
        assert sale_event.payload == {"companyId": company.id, "technologyId": technology.id}

        await offline.reconnect()

        sale = db_session.execute(select(Sale)).scalar_one()
        assert sale.visit_id is None
        assert sale.company_id == company.id

    async def test_company_created_offline_synced(self, offline, db_session):
        outcome = await offline.controller.handle_create_company({"name": "Oficina Lopes", "email": None})
        assert outcome.queued
        await offline.reconnect()
        assert await offline.store.count() == 0

    async def test_refresh_keeps_unsent_provisional_visit(self, offline):
        await offline.controller.handle_checkin()
        # Online flag without a drain, so the event is still queued
        offline.monitor._online = True
        visit = await offline.controller.refresh_active_visit()
        assert visit.provisional


@pytest.mark.asyncio
class TestOnlineActions:
    async def test_online_checkin_and_checkout(self, online, db_session, sales_user):
        outcome = await online.controller.handle_checkin()
        assert not outcome.queued
        assert isinstance(online.controller.active_visit.id, int)
        assert await online.store.count() == 0
        server_visit = _open_visits(db_session, sales_user.id)[0]
        assert server_visit.check_in_lat == pytest.approx(38.7223)

        outcome = await online.controller.handle_checkout()
        assert not outcome.queued
        assert outcome.data["visit"]["durationSeconds"] >= 0
        assert online.controller.active_visit is None

    async def test_rejected_checkin_leaves_state_unchanged(self, online, db_session, sales_user):
        db_session.add(Visit(
            user_id=sales_user.id,
            check_in_at=datetime.now(timezone.utc),
            check_in_no_gps_reason="abc",
        ))
        db_session.commit()

        with pytest.raises(ApiError) as exc:
            await online.controller.handle_checkin()
        assert exc.value.status_code == 400
        assert online.controller.active_visit is None
        assert await online.store.count() == 0

    async def test_queued_events_sent_before_direct_call(self, online, db_session, sales_user):
        await online.store.enqueue(EventType.CHECKIN, {"noGpsReason": "sem sinal"})

        # Would fail with "no active visit" if sent before the queued check-in
        outcome = await online.controller.handle_checkout()

        assert not outcome.queued
        assert await online.store.count() == 0
        assert _open_visits(db_session, sales_user.id) == []

    async def test_direct_call_waits_for_drain_in_progress(self, asgi_http, sales_token, db_session, sales_user):
        transport = HeldCheckinTransport()
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
            harness = Harness(http, sales_token, online=True, geolocation=FixedProvider())
            try:
                await harness.store.enqueue(EventType.CHECKIN, {"noGpsReason": "sem sinal"})
                drain = asyncio.create_task(harness.engine.sync_pending_events())
                await transport.held.wait()

                checkout = asyncio.create_task(harness.controller.handle_checkout())
                await asyncio.sleep(0.01)
                assert not checkout.done()

                transport.release.set()
                outcome = await checkout
                await drain
            finally:
                harness.controller.close()

        assert not outcome.queued
        assert transport.log == [("/api/v1/visits/checkin", 201), ("/api/v1/visits/checkout", 200)]
        assert _open_visits(db_session, sales_user.id) == []

    async def test_refresh_reads_server_visit(self, online, db_session, sales_user, company):
        db_session.add(Visit(
            user_id=sales_user.id,
            company_id=company.id,
            check_in_at=datetime.now(timezone.utc),
            check_in_no_gps_reason="abc",
        ))
        db_session.commit()

        visit = await online.controller.refresh_active_visit()
        assert visit.company_name == "Padaria Central"
        assert online.visit_updates == [visit]

    async def test_refresh_loop_start_stop(self, online):
        online.controller.active_visit_refresh_seconds = 0.01
        online.controller.start()
        await online.controller.stop()
        assert online.controller._refresh_task is None
