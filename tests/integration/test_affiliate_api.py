from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.models.affiliate import AffiliateEventType, AffiliateTrackingEvent
from app.models.client import Order
from app.models.user import User, UserRole
from app.services.affiliate_service import AffiliateService
from tests.conftest import bearer, create_client, create_user


@pytest.fixture
async def vendor_user(db_session) -> User:
    return await create_user(db_session, "Lucas Parceiro", UserRole.CONSULTANT, email="lucas@parceiro.test")


async def enable(client, user_id: int, headers: dict, **body):
    return await client.post(f"/api/v1/affiliate/vendors/{user_id}/enable", json=body or None, headers=headers)


async def clicks(session) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(AffiliateTrackingEvent)
        .where(AffiliateTrackingEvent.event_type == AffiliateEventType.CLICK)
    )
    return result.scalar()


@pytest.mark.asyncio
async def test_enable_vendor(client, vendor_user, admin_headers):
    response = await enable(client, vendor_user.id, admin_headers, custom_code="lucas-vv", commission_rate="0.2")
    assert response.status_code == 200
    body = response.json()
    assert body["affiliate_code"] == "LUCASVV"
    assert body["affiliate_link"] == "https://vittaverde.test/lucasvv"

    again = await enable(client, vendor_user.id, admin_headers)
    assert again.json()["affiliate_code"] == "LUCASVV"


@pytest.mark.asyncio
async def test_enable_vendor_errors(client, db_session, vendor_user, admin_headers, consultant_headers):
    await enable(client, vendor_user.id, admin_headers, custom_code="LUCAS")
    other = await create_user(db_session, "Outra", UserRole.CONSULTANT, email="outra@vv.test")

    response = await enable(client, other.id, admin_headers, custom_code="lucas")
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "duplicate_affiliate_code"

    assert (await enable(client, 999, admin_headers)).status_code == 404
    assert (await enable(client, other.id, consultant_headers)).status_code == 403


@pytest.mark.asyncio
async def test_clean_link_tracks_once_per_session(client, db_session, vendor_user, admin_headers):
    await enable(client, vendor_user.id, admin_headers, custom_code="LUCAS")

    response = await client.get("/lucas", headers={"user-agent": "pytest", "x-forwarded-for": "203.0.113.9"})
    assert response.status_code == 302
    assert response.headers["location"] == "/"

    # Same browser session: redirected again, no second click
    assert (await client.get("/lucas")).status_code == 302
    assert await clicks(db_session) == 1

    event = (await db_session.execute(select(AffiliateTrackingEvent))).scalar_one()
    assert event.ip_address == "203.0.113.9"
    assert event.user_agent == "pytest"


@pytest.mark.asyncio
async def test_ref_query_param(client, db_session, vendor_user, admin_headers):
    await enable(client, vendor_user.id, admin_headers, custom_code="LUCAS")

    response = await client.get("/promo", params={"ref": "lucas"})
    assert response.status_code == 302
    assert await clicks(db_session) == 1


@pytest.mark.asyncio
async def test_unknown_and_reserved_paths_are_not_found(client, db_session, vendor_user, admin_headers):
    await enable(client, vendor_user.id, admin_headers, custom_code="LOGIN1")

    assert (await client.get("/naoexiste")).status_code == 404
    assert (await client.get("/login")).status_code == 404
    assert (await client.get("/health")).status_code == 200
    assert await clicks(db_session) == 0


@pytest.mark.asyncio
async def test_client_registration_uses_session_code(client, db_session, vendor_user, admin_headers):
    await enable(client, vendor_user.id, admin_headers, custom_code="LUCAS")
    patient = await create_client(db_session, "Paula Paciente", "paula@example.com")
    patient_headers = bearer(await db_session.get(User, patient.user_id))

    # Same browser: clean link first, then the signup call with the new client's own token
    await client.get("/lucas")
    response = await client.post("/api/v1/affiliate/registrations", json={}, headers=patient_headers)
    assert response.status_code == 200
    assert response.json()["recorded"] is True

    # First vendor wins
    rival = await create_user(db_session, "Rival", UserRole.CONSULTANT, email="rival@vv.test")
    await enable(client, rival.id, admin_headers, custom_code="RIVAL")
    response = await client.post(
        "/api/v1/affiliate/registrations", json={"affiliate_code": "rival"}, headers=patient_headers
    )
    assert response.json()["recorded"] is False

    await db_session.refresh(patient)
    assert patient.affiliate_vendor_id == vendor_user.id


@pytest.mark.asyncio
async def test_client_registers_only_themselves(client, db_session, vendor_user, admin_headers):
    await enable(client, vendor_user.id, admin_headers, custom_code="LUCAS")
    patient = await create_client(db_session, "Paula Paciente", "paula@example.com")
    other = await create_client(db_session, "Outra Paciente", "outra@example.com")

    response = await client.post(
        "/api/v1/affiliate/registrations",
        json={"client_id": other.id, "affiliate_code": "LUCAS"},
        headers=bearer(await db_session.get(User, patient.user_id)),
    )
    assert response.json()["recorded"] is True

    await db_session.refresh(patient)
    await db_session.refresh(other)
    assert patient.affiliate_vendor_id == vendor_user.id
    assert other.affiliate_vendor_id is None


@pytest.mark.asyncio
async def test_admin_registration_needs_explicit_code(client, db_session, vendor_user, admin_headers):
    await enable(client, vendor_user.id, admin_headers, custom_code="LUCAS")
    patient = await create_client(db_session, "Paula Paciente", "paula@example.com")

    # The session belongs to whoever followed the link, never to an admin backfill
    await client.get("/lucas")
    response = await client.post(
        "/api/v1/affiliate/registrations", json={"client_id": patient.id}, headers=admin_headers
    )
    assert response.json() == {"recorded": False, "commission_value": None}

    response = await client.post(
        "/api/v1/affiliate/registrations", json={"affiliate_code": "LUCAS"}, headers=admin_headers
    )
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "client_id_required"


@pytest.mark.asyncio
async def test_registration_hook_access(client, db_session, consultant_headers):
    orphan = await create_user(db_session, "Sem Perfil", UserRole.CLIENT, email="semperfil@example.com")

    response = await client.post("/api/v1/affiliate/registrations", json={}, headers=bearer(orphan))
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "client_not_found"

    response = await client.post("/api/v1/affiliate/registrations", json={}, headers=consultant_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_registration_without_code(client, db_session):
    patient = await create_client(db_session, "Paula Paciente", "paula@example.com")
    response = await client.post(
        "/api/v1/affiliate/registrations", json={}, headers=bearer(await db_session.get(User, patient.user_id))
    )
    assert response.json() == {"recorded": False, "commission_value": None}


@pytest.mark.asyncio
async def test_purchase_and_vendor_dashboard(client, db_session, vendor_user, admin_headers):
    await enable(client, vendor_user.id, admin_headers, custom_code="LUCAS", commission_rate="0.2")
    patient = await create_client(db_session, "Paula Paciente", "paula@example.com")
    order = Order(client_id=patient.id, total=Decimal("300.00"))
    db_session.add(order)
    await db_session.commit()

    await client.get("/lucas")
    await client.post(
        "/api/v1/affiliate/registrations",
        json={"client_id": patient.id, "affiliate_code": "LUCAS"},
        headers=admin_headers,
    )
    response = await client.post(
        "/api/v1/affiliate/purchases",
        json={"client_id": patient.id, "order_id": order.id, "order_value": "300.00"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["recorded"] is True
    assert Decimal(str(response.json()["commission_value"])) == Decimal("60.00")

    await db_session.refresh(vendor_user)
    vendor_headers = bearer(vendor_user)

    metrics = (await client.get("/api/v1/affiliate/me/metrics", headers=vendor_headers)).json()
    assert metrics["clicks"] == 1
    assert metrics["registrations"] == 1
    assert metrics["purchases"] == 1
    assert Decimal(str(metrics["total_commission"])) == Decimal("60")
    assert metrics["conversion_rate"] == pytest.approx(1.0)
    assert [e["event_type"] for e in metrics["recent_activity"]] == ["purchase", "registration", "click"]

    clients = (await client.get("/api/v1/affiliate/me/clients", headers=vendor_headers)).json()
    assert [c["email"] for c in clients] == ["paula@example.com"]

    vendors = (await client.get("/api/v1/affiliate/vendors", headers=admin_headers)).json()
    assert vendors[0]["affiliate_code"] == "LUCAS"
    assert vendors[0]["metrics"]["purchases"] == 1


@pytest.mark.asyncio
async def test_purchase_for_unattributed_client(client, db_session, admin_headers):
    patient = await create_client(db_session, "Paula Paciente", "paula@example.com")
    response = await client.post(
        "/api/v1/affiliate/purchases",
        json={"client_id": patient.id, "order_id": 1, "order_value": "100"},
        headers=admin_headers,
    )
    assert response.json()["recorded"] is False


async def purchase_events(session) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(AffiliateTrackingEvent)
        .where(AffiliateTrackingEvent.event_type == AffiliateEventType.PURCHASE)
    )
    return result.scalar()


@pytest.mark.asyncio
async def test_purchase_for_unknown_order_is_ignored(client, db_session, vendor_user, admin_headers):
    await enable(client, vendor_user.id, admin_headers, custom_code="LUCAS")
    patient = await create_client(db_session, "Paula Paciente", "paula@example.com")
    await client.post(
        "/api/v1/affiliate/registrations",
        json={"client_id": patient.id, "affiliate_code": "LUCAS"},
        headers=admin_headers,
    )

    response = await client.post(
        "/api/v1/affiliate/purchases",
        json={"client_id": patient.id, "order_id": 999999, "order_value": "100"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["recorded"] is False
    assert await purchase_events(db_session) == 0


@pytest.mark.asyncio
async def test_purchase_counted_once_per_order(client, db_session, vendor_user, admin_headers):
    await enable(client, vendor_user.id, admin_headers, custom_code="LUCAS")
    patient = await create_client(db_session, "Paula Paciente", "paula@example.com")
    await client.post(
        "/api/v1/affiliate/registrations",
        json={"client_id": patient.id, "affiliate_code": "LUCAS"},
        headers=admin_headers,
    )
    order = Order(client_id=patient.id, total=Decimal("100.00"))
    db_session.add(order)
    await db_session.commit()

    body = {"client_id": patient.id, "order_id": order.id, "order_value": "100.00"}
    first = await client.post("/api/v1/affiliate/purchases", json=body, headers=admin_headers)
    second = await client.post("/api/v1/affiliate/purchases", json=body, headers=admin_headers)

    assert first.json()["recorded"] is True
    assert second.json()["recorded"] is False
    assert await purchase_events(db_session) == 1


@pytest.mark.asyncio
async def test_clean_link_redirects_when_tracking_fails(client, vendor_user, admin_headers, monkeypatch):
    await enable(client, vendor_user.id, admin_headers, custom_code="LUCAS")
    monkeypatch.setattr(
        AffiliateService, "get_vendor_by_code", AsyncMock(side_effect=SQLAlchemyError("database unavailable"))
    )

    response = await client.get("/lucas")
    assert response.status_code == 302
    assert response.headers["location"] == "/"


@pytest.mark.asyncio
async def test_dashboard_requires_vendor(client, consultant_headers, static_headers):
    assert (await client.get("/api/v1/affiliate/me/metrics", headers=consultant_headers)).status_code == 403
    assert (await client.get("/api/v1/affiliate/me/metrics", headers=static_headers)).status_code == 403


@pytest.mark.asyncio
async def test_disabled_vendor_link_is_dead(client, vendor_user, admin_headers):
    await enable(client, vendor_user.id, admin_headers, custom_code="LUCAS")
    response = await client.post(f"/api/v1/affiliate/vendors/{vendor_user.id}/disable", headers=admin_headers)
    assert response.status_code == 204

    assert (await client.get("/lucas")).status_code == 404


@pytest.mark.asyncio
async def test_purchase_replay_with_idempotency_key(client, db_session, vendor_user, admin_headers, monkeypatch):
    from app.core.idempotency import IdempotencyStore

    store = IdempotencyStore()
    store._redis_unavailable = True
    monkeypatch.setattr("app.api.v1.affiliates.idempotency_store", store)

    await enable(client, vendor_user.id, admin_headers, custom_code="LUCAS")
    patient = await create_client(db_session, "Paula Paciente", "paula@example.com")
    await client.post(
        "/api/v1/affiliate/registrations",
        json={"client_id": patient.id, "affiliate_code": "LUCAS"},
        headers=admin_headers,
    )
    order = Order(client_id=patient.id, total=Decimal("100.00"))
    db_session.add(order)
    await db_session.commit()

    body = {"client_id": patient.id, "order_id": order.id, "order_value": "100.00"}
    headers = {**admin_headers, "Idempotency-Key": "checkout-42"}
    first = await client.post("/api/v1/affiliate/purchases", json=body, headers=headers)
    second = await client.post("/api/v1/affiliate/purchases", json=body, headers=headers)

    assert first.json() == second.json()
    result = await db_session.execute(
        select(func.count())
        .select_from(AffiliateTrackingEvent)
        .where(AffiliateTrackingEvent.event_type == AffiliateEventType.PURCHASE)
    )
    assert result.scalar() == 1
