from decimal import Decimal

import pytest
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm.exc import StaleDataError

from app.core.middleware import ErrorHandlingMiddleware
from tests.conftest import bearer, create_client, create_consultant

LEAD_PAYLOAD = {
    "patient_name": "Maria Silva",
    "patient_email": "Maria@Example.com",
    "patient_phone": "+5511988887777",
    "priority": "High",
    "tags": ["cbd"],
}


async def create_lead(client: AsyncClient, headers: dict, **overrides) -> dict:
    response = await client.post("/api/v1/leads", json={**LEAD_PAYLOAD, **overrides}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def move(client: AsyncClient, lead_id: int, status: str, headers: dict, **extra):
    return await client.patch(f"/api/v1/leads/{lead_id}/status", json={"status": status, **extra}, headers=headers)


@pytest.mark.asyncio
async def test_create_lead_starts_in_first_stage(client, pipeline, consultant, consultant_headers):
    lead = await create_lead(client, consultant_headers)

    assert lead["status"] == "novo"
    assert lead["patient_email"] == "maria@example.com"
    assert lead["priority"] == "high"
    assert lead["consultant_id"] == consultant.id
    assert lead["version"] == 1

    history = await client.get(f"/api/v1/leads/{lead['id']}/history", headers=consultant_headers)
    assert history.status_code == 200
    entries = history.json()
    assert len(entries) == 1
    assert entries[0]["previous_status"] is None
    assert entries[0]["new_status"] == "novo"


@pytest.mark.asyncio
async def test_create_lead_without_stages(client, consultant_headers):
    response = await client.post("/api/v1/leads", json=LEAD_PAYLOAD, headers=consultant_headers)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "pipeline_not_configured"


@pytest.mark.asyncio
async def test_create_lead_validation(client, pipeline, consultant_headers):
    response = await client.post(
        "/api/v1/leads", json={**LEAD_PAYLOAD, "patient_email": "not-an-email"}, headers=consultant_headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_leads_filters(client, pipeline, consultant_headers, static_headers):
    first = await create_lead(client, consultant_headers)
    await create_lead(client, consultant_headers, patient_name="João Pereira", patient_email="joao@example.com")
    await move(client, first["id"], "contato_inicial", static_headers)

    response = await client.get("/api/v1/leads", params={"status": "contato_inicial"}, headers=consultant_headers)
    assert response.status_code == 200
    assert [lead["id"] for lead in response.json()] == [first["id"]]

    response = await client.get("/api/v1/leads", params={"q": "pereira"}, headers=consultant_headers)
    assert [lead["patient_name"] for lead in response.json()] == ["João Pereira"]


@pytest.mark.asyncio
async def test_status_move_records_history(client, pipeline, consultant_headers, comercial_user):
    lead = await create_lead(client, consultant_headers)

    response = await move(client, lead["id"], "aguardando_receita", bearer(comercial_user), notes="Pedido enviado")
    assert response.status_code == 200
    moved = response.json()
    assert moved["status"] == "aguardando_receita"
    assert moved["version"] > lead["version"]

    history = (await client.get(f"/api/v1/leads/{lead['id']}/history", headers=consultant_headers)).json()
    assert [h["new_status"] for h in history] == ["aguardando_receita", "novo"]
    assert history[0]["previous_status"] == "novo"
    assert history[0]["by_user_id"] == comercial_user.id
    assert history[0]["notes"] == "Pedido enviado"


@pytest.mark.asyncio
async def test_same_status_adds_no_history(client, pipeline, consultant_headers):
    lead = await create_lead(client, consultant_headers)

    response = await move(client, lead["id"], "novo", consultant_headers)
    assert response.status_code == 200

    history = (await client.get(f"/api/v1/leads/{lead['id']}/history", headers=consultant_headers)).json()
    assert len(history) == 1


@pytest.mark.asyncio
async def test_unknown_status_rejected(client, pipeline, consultant_headers):
    lead = await create_lead(client, consultant_headers)

    response = await move(client, lead["id"], "inexistente", consultant_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "unknown_stage"


@pytest.mark.asyncio
async def test_backward_move_after_validation(client, pipeline, consultant_headers, admin_headers):
    lead = await create_lead(client, consultant_headers)
    assert (await move(client, lead["id"], "receita_validada", consultant_headers)).status_code == 200

    response = await move(client, lead["id"], "aguardando_receita", consultant_headers)
    assert response.status_code == 422
    body = response.json()["detail"]
    assert body["code"] == "backward_transition_blocked"
    assert body["context"] == {"current_status": "receita_validada", "target_status": "aguardando_receita"}

    current = (await client.get(f"/api/v1/leads/{lead['id']}", headers=consultant_headers)).json()
    assert current["status"] == "receita_validada"

    response = await move(client, lead["id"], "aguardando_receita", admin_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "aguardando_receita"


@pytest.mark.asyncio
async def test_backward_move_before_validation_allowed(client, pipeline, consultant_headers):
    lead = await create_lead(client, consultant_headers)
    await move(client, lead["id"], "receita_recebida", consultant_headers)

    response = await move(client, lead["id"], "contato_inicial", consultant_headers)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_estimated_value_gate(client, pipeline, consultant_headers):
    lead = await create_lead(client, consultant_headers)

    response = await move(client, lead["id"], "contato_inicial", consultant_headers, estimated_value="1500.00")
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "estimated_value_not_allowed"

    response = await move(client, lead["id"], "receita_validada", consultant_headers, estimated_value="1500.00")
    assert response.status_code == 200
    assert Decimal(str(response.json()["estimated_value"])) == Decimal("1500")


@pytest.mark.asyncio
async def test_assignment_rules(client, db_session, pipeline, consultant, consultant_headers, admin_headers):
    other = await create_consultant(db_session, "Bruno Lima")
    other_headers = bearer(other.user)
    lead = await create_lead(client, consultant_headers)
    url = f"/api/v1/leads/{lead['id']}/assign"

    response = await client.patch(url, json={"consultant_id": consultant.id}, headers=consultant_headers)
    assert response.status_code == 200
    assert response.json()["assigned_consultant_id"] == consultant.id
    assert response.json()["assigned_at"] is not None

    response = await client.patch(url, json={"consultant_id": other.id}, headers=other_headers)
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "lead_already_assigned"

    response = await client.patch(url, json={"consultant_id": other.id}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["assigned_consultant_id"] == other.id

    response = await client.patch(url, json={"consultant_id": 999}, headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "consultant_not_found"


@pytest.mark.asyncio
async def test_patch_ignores_blank_values(client, pipeline, consultant_headers):
    lead = await create_lead(client, consultant_headers, notes="Primeiro contato")

    response = await client.patch(
        f"/api/v1/leads/{lead['id']}",
        json={"notes": "", "city": "São Paulo", "next_follow_up": None},
        headers=consultant_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["notes"] == "Primeiro contato"
    assert body["city"] == "São Paulo"
    assert body["status"] == "novo"


@pytest.mark.asyncio
async def test_delete_lead(client, pipeline, consultant_headers):
    lead = await create_lead(client, consultant_headers)

    response = await client.delete(f"/api/v1/leads/{lead['id']}", headers=consultant_headers)
    assert response.status_code == 204

    response = await client.get(f"/api/v1/leads/{lead['id']}", headers=consultant_headers)
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "lead_not_found"


@pytest.mark.asyncio
async def test_auto_lead_created_once(client, db_session, pipeline):
    patient = await create_client(db_session, "Paula Paciente", "paula@example.com")
    headers = bearer(patient.user)

    first = await client.post("/api/v1/leads/auto", headers=headers)
    assert first.status_code == 200
    assert first.json()["created"] is True
    lead = first.json()["lead"]
    assert lead["client_id"] == patient.id
    assert lead["patient_email"] == "paula@example.com"
    assert lead["source"] == "intake"

    second = await client.post("/api/v1/leads/auto", headers=headers)
    assert second.json()["created"] is False
    assert second.json()["lead"]["id"] == lead["id"]


@pytest.mark.asyncio
async def test_clients_cannot_read_the_board(client, db_session, pipeline):
    patient = await create_client(db_session, "Paula Paciente", "paula@example.com")

    response = await client.get("/api/v1/leads", headers=bearer(patient.user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_requires_authentication(client, pipeline):
    assert (await client.get("/api/v1/leads")).status_code in (401, 403)
    response = await client.get("/api/v1/leads", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_commission_report(client, db_session, pipeline, consultant, consultant_headers, static_headers):
    other = await create_consultant(db_session, "Bruno Lima", commission_rate="20")

    for owner, value in ((consultant, "1000.00"), (other, "500.00")):
        lead = await create_lead(client, static_headers)
        await client.patch(
            f"/api/v1/leads/{lead['id']}/assign", json={"consultant_id": owner.id}, headers=static_headers
        )
        await move(client, lead["id"], "finalizado", static_headers, estimated_value=value)

    response = await client.get("/api/v1/leads/commissions", headers=static_headers)
    assert response.status_code == 200
    report = response.json()
    assert report["total_sales_value"] == pytest.approx(1500.0)
    assert report["total_commissions"] == pytest.approx(200.0)
    assert report["average_rate"] == pytest.approx(200.0 / 1500.0)
    assert report["by_salesperson"][str(other.id)]["rate"] == pytest.approx(0.20)

    # Consultants only see their own line, whatever they ask for
    response = await client.get(
        "/api/v1/leads/commissions", params={"salesperson_id": other.id}, headers=consultant_headers
    )
    own = response.json()
    assert list(own["by_salesperson"]) == [str(consultant.id)]
    assert own["total_commissions"] == pytest.approx(100.0)


@pytest.mark.asyncio
async def test_pipeline_stats(client, pipeline, static_headers):
    done = await create_lead(client, static_headers)
    await create_lead(client, static_headers)
    await move(client, done["id"], "finalizado", static_headers, estimated_value="800")

    response = await client.get("/api/v1/leads/stats", headers=static_headers)
    assert response.status_code == 200
    stats = response.json()
    assert stats["total"] == 2
    assert stats["novos"] == 1
    assert stats["finalizados"] == 1
    assert stats["total_value"] == pytest.approx(800.0)
    assert stats["conversion_rate"] == 50


@pytest.mark.asyncio
async def test_lost_update_maps_to_conflict():
    app = FastAPI()
    app.add_middleware(ErrorHandlingMiddleware)

    @app.patch("/boom")
    async def boom():
        raise StaleDataError("UPDATE statement on table 'leads' expected to update 1 row(s); 0 were matched.")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.patch("/boom")

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "lead_conflict"
