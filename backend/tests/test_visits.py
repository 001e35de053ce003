"""Tests for the visit session state machine and its endpoints."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fieldsales.models.operations import AuditLogEntry, IdempotencyRecord
from fieldsales.models.sale import Sale
from fieldsales.models.visit import Visit
from fieldsales.services.visit_session_service import (
    GpsRequiredError,
    VisitSessionService,
    VisitState,
    VisitStateError,
    compute_duration_seconds,
)

CHECKIN = "/api/v1/visits/checkin"
CHECKOUT = "/api/v1/visits/checkout"
ACTIVE = "/api/v1/visits/active"


def _open_visits(db_session, user_id):
    return db_session.execute(
        select(Visit).where(Visit.user_id == user_id, Visit.check_out_at.is_(None))
    ).scalars().all()


# ============== Service ==============

class TestVisitSessionService:
    def test_state_transitions(self, db_session, sales_user):
        service = VisitSessionService(db_session)
        assert service.get_state(sales_user.id) == VisitState.NO_ACTIVE_VISIT

        service.check_in(sales_user.id, lat=38.7, lng=-9.1)
        assert service.get_state(sales_user.id) == VisitState.VISIT_OPEN

        service.check_out(sales_user.id, no_gps_reason="sem sinal")
        assert service.get_state(sales_user.id) == VisitState.NO_ACTIVE_VISIT

    def test_checkin_requires_gps_or_reason(self, db_session, sales_user):
        service = VisitSessionService(db_session)
        with pytest.raises(GpsRequiredError):
            service.check_in(sales_user.id)
        with pytest.raises(GpsRequiredError):
            service.check_in(sales_user.id, lat=38.7)  # half a pair is no pair
        with pytest.raises(GpsRequiredError):
            service.check_in(sales_user.id, no_gps_reason="   ")

    def test_second_checkin_rejected(self, db_session, sales_user):
        service = VisitSessionService(db_session)
        service.check_in(sales_user.id, lat=38.7, lng=-9.1)
        with pytest.raises(VisitStateError):
            service.check_in(sales_user.id, lat=38.7, lng=-9.1)
        assert len(_open_visits(db_session, sales_user.id)) == 1

    def test_checkout_without_open_visit_rejected(self, db_session, sales_user):
        with pytest.raises(VisitStateError):
            VisitSessionService(db_session).check_out(sales_user.id, lat=38.7, lng=-9.1)

    def test_users_do_not_interact(self, db_session, sales_user, other_sales_user):
        service = VisitSessionService(db_session)
        service.check_in(sales_user.id, lat=38.7, lng=-9.1)
        service.check_in(other_sales_user.id, no_gps_reason="indoor, no signal")
        assert service.get_state(other_sales_user.id) == VisitState.VISIT_OPEN

    def test_database_rejects_second_open_visit(self, db_session, sales_user):
        now = datetime.now(timezone.utc)
        db_session.add(Visit(user_id=sales_user.id, check_in_at=now, check_in_no_gps_reason="abc"))
        db_session.commit()
        db_session.add(Visit(user_id=sales_user.id, check_in_at=now, check_in_no_gps_reason="abc"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_closed_visits_do_not_block_index(self, db_session, sales_user):
        now = datetime.now(timezone.utc)
        for _ in range(2):
            db_session.add(Visit(
                user_id=sales_user.id,
                check_in_at=now - timedelta(hours=1),
                check_in_no_gps_reason="abc",
                check_out_at=now,
                duration_seconds=3600,
            ))
        db_session.add(Visit(user_id=sales_user.id, check_in_at=now, check_in_no_gps_reason="abc"))
        db_session.commit()
        assert len(_open_visits(db_session, sales_user.id)) == 1


class TestDuration:
    def test_floors_to_whole_seconds(self):
        start = datetime(2026, 1, 1, 9, 0, 0, tzinfo=timezone.utc)
        assert compute_duration_seconds(start, start + timedelta(seconds=61, milliseconds=999)) == 61

    def test_clamped_non_negative(self):
        start = datetime(2026, 1, 1, 9, 0, 0, tzinfo=timezone.utc)
        assert compute_duration_seconds(start, start - timedelta(seconds=5)) == 0

    def test_naive_values_treated_as_utc(self):
        start = datetime(2026, 1, 1, 9, 0, 0)
        end = datetime(2026, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        assert compute_duration_seconds(start, end) == 3600


# ============== Check-in endpoint ==============

class TestCheckinEndpoint:
    def test_checkin_with_gps(self, client, auth_headers, company):
        res = client.post(CHECKIN, json={
            "companyId": company.id,
            "checkInLat": 38.7,
            "checkInLng": -9.1,
        }, headers=auth_headers)
        assert res.status_code == 201
        visit = res.json()["visit"]
        assert set(visit) == {"id", "checkInAt", "companyId"}
        assert visit["companyId"] == company.id

    def test_checkin_with_justification_only(self, client, auth_headers, db_session, sales_user):
        res = client.post(CHECKIN, json={"noGpsReason": "  sem sinal  "}, headers=auth_headers)
        assert res.status_code == 201
        visit = db_session.get(Visit, res.json()["visit"]["id"])
        assert visit.check_in_no_gps_reason == "sem sinal"
        assert visit.check_in_lat is None

    def test_checkin_without_gps_or_reason_400(self, client, auth_headers):
        res = client.post(CHECKIN, json={}, headers=auth_headers)
        assert res.status_code == 400
        assert "justification" in res.json()["detail"]

    def test_blank_reason_counts_as_missing(self, client, auth_headers):
        res = client.post(CHECKIN, json={"noGpsReason": "   "}, headers=auth_headers)
        assert res.status_code == 400

    def test_short_reason_422(self, client, auth_headers):
        res = client.post(CHECKIN, json={"noGpsReason": "ab"}, headers=auth_headers)
        assert res.status_code == 422

    def test_latitude_out_of_range_422(self, client, auth_headers):
        res = client.post(CHECKIN, json={"checkInLat": 91, "checkInLng": 0}, headers=auth_headers)
        assert res.status_code == 422

    def test_unknown_company_404(self, client, auth_headers):
        res = client.post(CHECKIN, json={"companyId": 999, "noGpsReason": "sem sinal"}, headers=auth_headers)
        assert res.status_code == 404

    def test_second_checkin_400_and_state_unchanged(self, client, auth_headers, db_session, sales_user):
        first = client.post(CHECKIN, json={"checkInLat": 38.7, "checkInLng": -9.1}, headers=auth_headers)
        assert first.status_code == 201
        second = client.post(CHECKIN, json={"checkInLat": 38.7, "checkInLng": -9.1}, headers=auth_headers)
        assert second.status_code == 400
        assert "active visit" in second.json()["detail"]
        open_visits = _open_visits(db_session, sales_user.id)
        assert [v.id for v in open_visits] == [first.json()["visit"]["id"]]

    def test_checkin_is_audited(self, client, auth_headers, db_session, sales_user):
        res = client.post(CHECKIN, json={"noGpsReason": "sem sinal"}, headers={
            **auth_headers, "User-Agent": "field-app/1.0",
        })
        entry = db_session.execute(
            select(AuditLogEntry).where(AuditLogEntry.action == "visit.checkin")
        ).scalar_one()
        assert entry.user_id == sales_user.id
        assert entry.entity_id == str(res.json()["visit"]["id"])
        assert entry.details["hasGps"] is False
        assert entry.details["noGpsReason"] == "sem sinal"
        assert entry.user_agent == "field-app/1.0"


# ============== Check-out endpoint ==============

class TestCheckoutEndpoint:
    def test_checkout_without_open_visit_400(self, client, auth_headers):
        res = client.post(CHECKOUT, json={"checkOutLat": 38.7, "checkOutLng": -9.1}, headers=auth_headers)
        assert res.status_code == 400

    def test_checkout_requires_gps_or_reason(self, client, auth_headers):
        client.post(CHECKIN, json={"checkInLat": 38.7, "checkInLng": -9.1}, headers=auth_headers)
        res = client.post(CHECKOUT, json={}, headers=auth_headers)
        assert res.status_code == 400

    def test_checkout_with_justification_only(self, client, auth_headers, db_session, sales_user):
        client.post(CHECKIN, json={"checkInLat": 38.7, "checkInLng": -9.1}, headers=auth_headers)
        res = client.post(CHECKOUT, json={"noGpsReason": "sem sinal"}, headers=auth_headers)
        assert res.status_code == 200
        visit = res.json()["visit"]
        assert set(visit) == {"id", "checkInAt", "checkOutAt", "durationSeconds"}
        assert visit["durationSeconds"] >= 0

        stored = db_session.get(Visit, visit["id"])
        db_session.refresh(stored)
        assert stored.check_out_no_gps_reason == "sem sinal"
        assert _open_visits(db_session, sales_user.id) == []

    def test_duration_computed_from_check_in(self, client, auth_headers, db_session, sales_user):
        db_session.add(Visit(
            user_id=sales_user.id,
            check_in_at=datetime.now(timezone.utc) - timedelta(seconds=90),
            check_in_lat=38.7,
            check_in_lng=-9.1,
        ))
        db_session.commit()

        res = client.post(CHECKOUT, json={"checkOutLat": 38.7, "checkOutLng": -9.1}, headers=auth_headers)
        assert res.status_code == 200
        assert 90 <= res.json()["visit"]["durationSeconds"] <= 95

    def test_checkout_is_audited(self, client, auth_headers, db_session):
        client.post(CHECKIN, json={"checkInLat": 38.7, "checkInLng": -9.1}, headers=auth_headers)
        client.post(CHECKOUT, json={"checkOutLat": 38.7, "checkOutLng": -9.1}, headers=auth_headers)
        entry = db_session.execute(
            select(AuditLogEntry).where(AuditLogEntry.action == "visit.checkout")
        ).scalar_one()
        assert entry.details["hasGps"] is True
        assert "durationSeconds" in entry.details


# ============== Idempotent replay ==============

class TestIdempotentReplay:
    def test_checkin_replay_returns_stored_response(self, client, auth_headers, db_session, sales_user):
        headers = {**auth_headers, "Idempotency-Key": "checkin-1760000000000-abc"}
        first = client.post(CHECKIN, json={"noGpsReason": "sem sinal"}, headers=headers)
        replay = client.post(CHECKIN, json={"noGpsReason": "sem sinal"}, headers=headers)

        assert first.status_code == 201
        assert replay.status_code == 201
        assert replay.json() == first.json()
        assert replay.headers["Idempotent-Replay"] == "true"
        assert len(_open_visits(db_session, sales_user.id)) == 1

    def test_checkout_replay_not_rejected(self, client, auth_headers):
        client.post(CHECKIN, json={"noGpsReason": "sem sinal"}, headers=auth_headers)
        headers = {**auth_headers, "Idempotency-Key": "checkout-1760000000000-abc"}
        first = client.post(CHECKOUT, json={"noGpsReason": "sem sinal"}, headers=headers)
        replay = client.post(CHECKOUT, json={"noGpsReason": "sem sinal"}, headers=headers)
        assert first.status_code == 200
        assert replay.status_code == 200
        assert replay.json() == first.json()

    def test_failed_request_is_not_stored(self, client, auth_headers, db_session):
        headers = {**auth_headers, "Idempotency-Key": "checkout-1-x"}
        res = client.post(CHECKOUT, json={"noGpsReason": "sem sinal"}, headers=headers)
        assert res.status_code == 400
        assert db_session.execute(select(IdempotencyRecord)).scalars().all() == []

    def test_keys_are_per_user(self, client, auth_headers, other_headers):
        key = {"Idempotency-Key": "checkin-shared"}
        mine = client.post(CHECKIN, json={"noGpsReason": "sem sinal"}, headers={**auth_headers, **key})
        theirs = client.post(CHECKIN, json={"noGpsReason": "sem sinal"}, headers={**other_headers, **key})
        assert theirs.status_code == 201
        assert theirs.json()["visit"]["id"] != mine.json()["visit"]["id"]


# ============== Active visit, history, association ==============

class TestActiveVisit:
    def test_no_active_visit(self, client, auth_headers):
        res = client.get(ACTIVE, headers=auth_headers)
        assert res.status_code == 200
        assert res.json() == {"visit": None}

    def test_active_visit_with_company_name(self, client, auth_headers, company):
        created = client.post(CHECKIN, json={
            "companyId": company.id, "checkInLat": 38.7, "checkInLng": -9.1,
        }, headers=auth_headers).json()["visit"]

        visit = client.get(ACTIVE, headers=auth_headers).json()["visit"]
        assert visit["id"] == created["id"]
        assert visit["companyName"] == "Padaria Central"

    def test_cleared_after_checkout(self, client, auth_headers):
        client.post(CHECKIN, json={"noGpsReason": "sem sinal"}, headers=auth_headers)
        client.post(CHECKOUT, json={"noGpsReason": "sem sinal"}, headers=auth_headers)
        assert client.get(ACTIVE, headers=auth_headers).json() == {"visit": None}


class TestVisitHistory:
    @pytest.fixture
    def history(self, db_session, sales_user, other_sales_user, company, technology):
        now = datetime.now(timezone.utc)
        done = []
        for hours in (3, 2):
            visit = Visit(
                user_id=sales_user.id,
                company_id=company.id,
                check_in_at=now - timedelta(hours=hours),
                check_in_lat=38.7,
                check_in_lng=-9.1,
                check_out_at=now - timedelta(hours=hours - 1),
                check_out_lat=38.7,
                check_out_lng=-9.1,
                duration_seconds=3600,
            )
            db_session.add(visit)
            done.append(visit)
        db_session.add(Visit(user_id=sales_user.id, check_in_at=now, check_in_no_gps_reason="abc"))
        db_session.add(Visit(user_id=other_sales_user.id, check_in_at=now, check_in_no_gps_reason="abc"))
        db_session.flush()
        db_session.add(Sale(
            user_id=sales_user.id,
            company_id=company.id,
            technology_id=technology.id,
            visit_id=done[0].id,
        ))
        db_session.commit()
        return done

    def test_lists_only_own_visits_newest_first(self, client, auth_headers, history):
        data = client.get("/api/v1/visits", headers=auth_headers).json()
        assert data["pagination"]["total"] == 3
        times = [v["checkInAt"] for v in data["visits"]]
        assert times == sorted(times, reverse=True)

    def test_status_filter(self, client, auth_headers, history):
        active = client.get("/api/v1/visits?status=active", headers=auth_headers).json()
        completed = client.get("/api/v1/visits?status=completed", headers=auth_headers).json()
        assert active["pagination"]["total"] == 1
        assert completed["pagination"]["total"] == 2
        assert all(v["checkOutAt"] is not None for v in completed["visits"])

    def test_invalid_status_422(self, client, auth_headers):
        assert client.get("/api/v1/visits?status=weird", headers=auth_headers).status_code == 422

    def test_pagination_and_sales_count(self, client, auth_headers, history):
        data = client.get("/api/v1/visits?status=completed&limit=1&page=2", headers=auth_headers).json()
        assert data["pagination"] == {"page": 2, "limit": 1, "total": 2, "totalPages": 2}
        assert len(data["visits"]) == 1
        # Oldest completed visit carries the sale
        assert data["visits"][0]["salesCount"] == 1
        assert data["visits"][0]["company"]["name"] == "Padaria Central"

    def test_limit_is_capped(self, client, auth_headers, history):
        data = client.get("/api/v1/visits?limit=500", headers=auth_headers).json()
        assert data["pagination"]["limit"] == 50


class TestAssociateCompany:
    def _open_visit(self, client, headers):
        return client.post(CHECKIN, json={"noGpsReason": "sem sinal"}, headers=headers).json()["visit"]["id"]

    def test_owner_can_associate(self, client, auth_headers, company):
        visit_id = self._open_visit(client, auth_headers)
        res = client.patch(
            f"/api/v1/visits/{visit_id}/associate-company",
            json={"companyId": company.id},
            headers=auth_headers,
        )
        assert res.status_code == 200
        assert res.json()["visit"]["companyId"] == company.id
        assert res.json()["visit"]["company"]["name"] == "Padaria Central"

    def test_other_agent_forbidden(self, client, auth_headers, other_headers, company):
        visit_id = self._open_visit(client, auth_headers)
        res = client.patch(
            f"/api/v1/visits/{visit_id}/associate-company",
            json={"companyId": company.id},
            headers=other_headers,
        )
        assert res.status_code == 403

    def test_admin_may_associate(self, client, auth_headers, admin_headers, company):
        visit_id = self._open_visit(client, auth_headers)
        res = client.patch(
            f"/api/v1/visits/{visit_id}/associate-company",
            json={"companyId": company.id},
            headers=admin_headers,
        )
        assert res.status_code == 200

    def test_unknown_company_404(self, client, auth_headers):
        visit_id = self._open_visit(client, auth_headers)
        res = client.patch(
            f"/api/v1/visits/{visit_id}/associate-company",
            json={"companyId": 999},
            headers=auth_headers,
        )
        assert res.status_code == 404

    def test_unknown_visit_404(self, client, auth_headers, company):
        res = client.patch(
            "/api/v1/visits/999/associate-company",
            json={"companyId": company.id},
            headers=auth_headers,
        )
        assert res.status_code == 404
