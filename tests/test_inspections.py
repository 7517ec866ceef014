import json
from datetime import date, timedelta
from unittest.mock import patch

from app.core.errors import CollaboratorUnavailable
from app.db import models
from app.services.ai_client import ActionPlanDraft


def test_create_discards_injected_organization_id(client, db_session, make_org, make_user, auth_headers):
    own = make_org("Propria")
    foreign = make_org("Alheia")
    inspector = make_user(role="inspector", organization=own)

    res = client.post(
        "/api/inspections",
        json={"title": "Vistoria", "organization_id": foreign.id},
        headers=auth_headers(inspector),
    )
    assert res.status_code == 201
    assert res.json()["organization_id"] == own.id

    inspection = db_session.get(models.Inspection, res.json()["id"])
    assert inspection.organization_id == own.id
    assert inspection.created_by == inspector.id

    event = db_session.query(models.SecurityEvent).one()
    assert event.action_type == "tenant_id_injection"
    assert event.details["requested_organization_id"] == foreign.id
    assert event.details["effective_organization_id"] == own.id


def test_create_classifies_items_and_audits(client, db_session, make_org, make_user, auth_headers):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)

    res = client.post(
        "/api/inspections",
        json={
            "title": "Vistoria NR-35",
            "items": [
                {"item_description": "Cinto de seguranca", "field_type": "boolean", "response_value": False},
                {"item_description": "Sinalizacao", "field_type": "rating", "response_value": 4},
                {"item_description": "Observacoes", "field_type": "text"},
            ],
        },
        headers=auth_headers(inspector),
    )
    assert res.status_code == 201
    inspection_id = res.json()["id"]

    statuses = [
        item.compliance_status
        for item in db_session.query(models.InspectionItem).order_by(models.InspectionItem.id).all()
    ]
    assert statuses == ["nao_conforme", "conforme", None]

    log = db_session.query(models.AuditLog).one()
    assert log.action == "CREATE"
    assert log.inspection_id == inspection_id
    assert log.organization_id == organization.id


def test_create_rejects_unknown_field_type(client, make_org, make_user, auth_headers):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    res = client.post(
        "/api/inspections",
        json={"title": "X", "items": [{"item_description": "Y", "field_type": "signature"}]},
        headers=auth_headers(inspector),
    )
    assert res.status_code == 422


def test_update_cannot_change_organization(client, db_session, make_org, make_user, make_inspection, auth_headers):
    own = make_org("Propria")
    foreign = make_org("Alheia")
    inspector = make_user(role="inspector", organization=own)
    inspection = make_inspection(own, inspector)

    res = client.put(
        f"/api/inspections/{inspection.id}",
        json={"organization_id": foreign.id, "title": "Nova"},
        headers=auth_headers(inspector),
    )
    assert res.status_code == 403
    body = res.json()
    assert body["error"] == "immutable_field"
    assert body["field"] == "organization_id"
    assert body["message"] == "Nao e possivel alterar a organizacao"

    db_session.refresh(inspection)
    assert inspection.organization_id == own.id
    assert inspection.title == "Inspecao"
    assert db_session.query(models.AuditLog).filter(models.AuditLog.field_changed == "organization_id").count() == 0
    event = db_session.query(models.SecurityEvent).one()
    assert event.action_type == "organization_change_attempt"


def test_update_with_same_organization_is_accepted(client, make_org, make_user, make_inspection, auth_headers):
    own = make_org("Propria")
    inspector = make_user(role="inspector", organization=own)
    inspection = make_inspection(own, inspector)

    res = client.put(
        f"/api/inspections/{inspection.id}",
        json={"organization_id": own.id, "title": "Revisada"},
        headers=auth_headers(inspector),
    )
    assert res.status_code == 200
    assert res.json()["changed_fields"] == ["title"]


def test_update_writes_one_audit_row_per_field(client, db_session, make_org, make_user, make_inspection, auth_headers):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    inspection = make_inspection(organization, inspector)
    headers = auth_headers(inspector, user_agent="CompiaApp/2.0")
    headers["X-Forwarded-For"] = "203.0.113.7, 10.0.0.1"

    res = client.put(
        f"/api/inspections/{inspection.id}",
        json={"title": "Nova", "status": "em_andamento", "location": None},
        headers=headers,
    )
    assert res.status_code == 200

    logs = db_session.query(models.AuditLog).order_by(models.AuditLog.id).all()
    assert [log.field_changed for log in logs] == ["title", "status"]
    by_field = {log.field_changed: log for log in logs}
    assert json.loads(by_field["title"].old_value) == "Inspecao"
    assert json.loads(by_field["title"].new_value) == "Nova"
    assert by_field["status"].user_id == inspector.id
    assert by_field["status"].ip_address == "203.0.113.7"
    assert by_field["status"].user_agent == "CompiaApp/2.0"
    assert by_field["status"].organization_id == organization.id


def test_update_rejects_invalid_status(client, make_org, make_user, make_inspection, auth_headers):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    inspection = make_inspection(organization, inspector)
    res = client.put(
        f"/api/inspections/{inspection.id}",
        json={"status": "arquivada"},
        headers=auth_headers(inspector),
    )
    assert res.status_code == 422


def test_org_admin_cannot_reach_grandchild_inspections(
    client, db_session, make_org, make_user, make_inspection, auth_headers
):
    root = make_org("Raiz")
    child = make_org("Filha", parent=root)
    grandchild = make_org("Neta", parent=child)
    org_admin = make_user(role="org_admin", organization=root, managed=root)
    child_inspector = make_user(role="inspector", organization=child)
    grandchild_inspector = make_user(role="inspector", organization=grandchild)
    visible = make_inspection(child, child_inspector, title="Filha")
    hidden = make_inspection(grandchild, grandchild_inspector, title="Neta")

    headers = auth_headers(org_admin)
    assert client.get(f"/api/inspections/{visible.id}", headers=headers).status_code == 200

    res = client.get(f"/api/inspections/{hidden.id}", headers=headers)
    assert res.status_code == 403
    event = db_session.query(models.SecurityEvent).one()
    assert event.action_type == "cross_tenant_access"
    assert event.details["inspection_id"] == hidden.id

    listed = client.get("/api/inspections", headers=headers).json()["inspections"]
    assert [inspection["title"] for inspection in listed] == ["Filha"]


def test_creator_keeps_access_after_moving_organization(
    client, db_session, make_org, make_user, make_inspection, auth_headers
):
    first = make_org("Primeira")
    second = make_org("Segunda")
    inspector = make_user(role="inspector", organization=first)
    inspection = make_inspection(first, inspector)
    inspector.organization_id = second.id
    db_session.commit()

    headers = auth_headers(inspector)
    assert client.get(f"/api/inspections/{inspection.id}", headers=headers).status_code == 200
    listed = client.get("/api/inspections", headers=headers).json()["inspections"]
    assert [row["id"] for row in listed] == [inspection.id]


def test_empty_context_is_forbidden_before_not_found(client, make_user, auth_headers):
    pending = make_user(role="pending", approval="pending")
    headers = auth_headers(pending)
    assert client.get("/api/inspections", headers=headers).status_code == 403
    assert client.get("/api/inspections/999", headers=headers).status_code == 403


def test_missing_inspection_is_not_found(client, make_org, make_user, auth_headers):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    res = client.get("/api/inspections/999", headers=auth_headers(inspector))
    assert res.status_code == 404
    assert res.json()["error"] == "not_found"


def test_client_viewer_cannot_edit(client, make_org, make_user, make_inspection, auth_headers):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    viewer = make_user(role="client_viewer", organization=organization)
    inspection = make_inspection(organization, inspector)

    headers = auth_headers(viewer)
    assert client.get(f"/api/inspections/{inspection.id}", headers=headers).status_code == 200
    res = client.put(f"/api/inspections/{inspection.id}", json={"title": "X"}, headers=headers)
    assert res.status_code == 403


def test_delete_keeps_audit_history(client, db_session, make_org, make_user, make_inspection, auth_headers):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    inspection = make_inspection(organization, inspector, items=[("Extintor", "boolean")])
    inspection_id = inspection.id
    headers = auth_headers(inspector)

    client.put(f"/api/inspections/{inspection_id}", json={"title": "Antes de excluir"}, headers=headers)
    res = client.delete(f"/api/inspections/{inspection_id}", headers=headers)
    assert res.status_code == 200

    assert db_session.get(models.Inspection, inspection_id) is None
    assert db_session.query(models.InspectionItem).count() == 0
    actions = [
        log.action
        for log in db_session.query(models.AuditLog)
        .filter(models.AuditLog.inspection_id == inspection_id)
        .order_by(models.AuditLog.id)
        .all()
    ]
    assert actions == ["UPDATE", "DELETE"]

    log = db_session.query(models.AuditLog).filter(models.AuditLog.action == "DELETE").one()
    snapshot = json.loads(log.old_value)
    assert snapshot["title"] == "Antes de excluir"
    assert snapshot["organization_id"] == organization.id
    assert snapshot["created_by"] == inspector.id
    assert "location" in snapshot
    assert snapshot["items"][0]["item_description"] == "Extintor"
    assert snapshot["action_item_ids"] == []


def test_finalize_and_reopen(client, db_session, make_org, make_user, make_inspection, auth_headers):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    inspection = make_inspection(organization, inspector)
    headers = auth_headers(inspector)

    res = client.post(f"/api/inspections/{inspection.id}/finalize", json={}, headers=headers)
    assert res.status_code == 422

    res = client.post(
        f"/api/inspections/{inspection.id}/finalize",
        json={"inspector_signature": "sig-a", "responsible_signature": "sig-b"},
        headers=headers,
    )
    assert res.status_code == 200
    db_session.refresh(inspection)
    assert inspection.status == "concluida"
    assert inspection.completed_date == date.today()

    res = client.post(f"/api/inspections/{inspection.id}/reopen", json={"justification": "  "}, headers=headers)
    assert res.status_code == 422

    res = client.post(
        f"/api/inspections/{inspection.id}/reopen",
        json={"justification": "Assinatura errada"},
        headers=headers,
    )
    assert res.status_code == 200
    db_session.refresh(inspection)
    assert inspection.status == "em_andamento"
    assert inspection.inspector_signature is None
    assert inspection.reopen_justification == "Assinatura errada"


def test_save_response_reclassifies_item(client, db_session, make_org, make_user, make_inspection, auth_headers):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    inspection = make_inspection(organization, inspector, items=[("Iluminacao", "rating")])
    item = inspection.items[0]

    res = client.patch(
        f"/api/inspections/{inspection.id}/responses/{item.id}",
        json={"response_value": 3, "comment": "Parcial"},
        headers=auth_headers(inspector),
    )
    assert res.status_code == 200
    assert res.json()["compliance_status"] == "parcialmente_conforme"

    db_session.refresh(item)
    assert item.field_responses["comment"] == "Parcial"
    fields = {
        log.field_changed
        for log in db_session.query(models.AuditLog).filter(models.AuditLog.resource_type == "inspection_item")
    }
    assert fields == {"field_responses", "compliance_status"}


def test_compliance_summary_endpoint(client, make_org, make_user, make_inspection, auth_headers):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    inspection = make_inspection(organization, inspector, items=[("A", "boolean"), ("B", "boolean")])
    headers = auth_headers(inspector)
    first, second = inspection.items
    client.patch(
        f"/api/inspections/{inspection.id}/responses/{first.id}", json={"response_value": True}, headers=headers
    )
    client.patch(
        f"/api/inspections/{inspection.id}/responses/{second.id}", json={"response_value": False}, headers=headers
    )

    summary = client.get(f"/api/inspections/{inspection.id}/compliance", headers=headers).json()
    assert summary["total_items"] == 2
    assert summary["compliance_percentage"] == 50


def test_manual_action_item_uses_defaults(client, make_org, make_user, make_inspection, auth_headers):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    inspection = make_inspection(organization, inspector)

    res = client.post(
        f"/api/inspections/{inspection.id}/action-items",
        json={"inspection_item_id": 9999, "what_description": "Trocar extintor"},
        headers=auth_headers(inspector),
    )
    assert res.status_code == 201
    action = res.json()["action_item"]
    assert action["inspection_item_id"] is None
    assert action["title"] == "Ação Corretiva"
    assert action["who_responsible"] == "A definir"
    assert action["when_deadline"] == (date.today() + timedelta(days=30)).isoformat()


@patch("app.services.action_items.ai_client.request_action_plan")
def test_create_action_falls_back_to_rules(
    mock_ai, client, db_session, make_org, make_user, make_inspection, auth_headers
):
    mock_ai.side_effect = CollaboratorUnavailable("sem chave")
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    inspection = make_inspection(organization, inspector, items=[("Guarda-corpo instalado", "boolean")])
    item = inspection.items[0]

    res = client.post(
        f"/api/inspections/{inspection.id}/items/{item.id}/create-action",
        json={"response_value": False},
        headers=auth_headers(inspector),
    )
    assert res.status_code == 200
    body = res.json()
    assert body["action"]["risk_tier"] == "alta"
    action = body["action_item"]
    assert action["is_ai_generated"] is False
    assert action["priority"] == "alta"
    assert action["when_deadline"] == (date.today() + timedelta(days=14)).isoformat()
    assert action["title"] == "Guarda-corpo instalado"
    mock_ai.assert_called_once()


@patch("app.services.action_items.ai_client.request_action_plan")
def test_create_action_uses_ai_draft_but_policy_deadline(
    mock_ai, client, make_org, make_user, make_inspection, auth_headers
):
    mock_ai.return_value = ActionPlanDraft(title="Instalar guarda-corpo", who_responsible="Equipe de manutencao")
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    inspection = make_inspection(organization, inspector, items=[("Nota da escada", "rating")])
    item = inspection.items[0]

    res = client.post(
        f"/api/inspections/{inspection.id}/items/{item.id}/create-action",
        json={"response_value": 1},
        headers=auth_headers(inspector),
    )
    action = res.json()["action_item"]
    assert action["is_ai_generated"] is True
    assert action["title"] == "Instalar guarda-corpo"
    assert action["priority"] == "critica"
    assert action["when_deadline"] == (date.today() + timedelta(days=7)).isoformat()


@patch("app.services.action_items.ai_client.request_action_plan")
def test_create_action_not_needed(mock_ai, client, db_session, make_org, make_user, make_inspection, auth_headers):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    inspection = make_inspection(organization, inspector, items=[("Nota", "rating")])
    item = inspection.items[0]

    res = client.post(
        f"/api/inspections/{inspection.id}/items/{item.id}/create-action",
        json={"response_value": 5},
        headers=auth_headers(inspector),
    )
    assert res.status_code == 200
    body = res.json()
    assert body["action_item"] is None
    assert body["action"]["requires_action"] is False
    assert db_session.query(models.ActionItem).count() == 0
    mock_ai.assert_not_called()
