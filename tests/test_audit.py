import logging
from unittest.mock import patch

import pytest
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from starlette.requests import Request

from app.db import models
from app.services.audit import AuditLogger, CallerMeta, FieldChange, apply_changes, caller_meta, serialize_value


def _request(headers=None, client=("198.51.100.4", 5000)):
    raw_headers = [(key.lower().encode(), value.encode()) for key, value in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw_headers, "client": client})


def test_caller_meta_prefers_edge_headers():
    meta = caller_meta(_request({"CF-Connecting-IP": "192.0.2.1", "X-Forwarded-For": "203.0.113.9"}))
    assert meta.ip_address == "192.0.2.1"

    meta = caller_meta(_request({"X-Forwarded-For": "203.0.113.9, 10.0.0.1", "User-Agent": "curl/8"}))
    assert meta.ip_address == "203.0.113.9"
    assert meta.user_agent == "curl/8"

    meta = caller_meta(_request())
    assert meta.ip_address == "198.51.100.4"
    assert meta.user_agent is None


def test_apply_changes_only_touches_allowed_fields(db_session, make_org, make_user, make_inspection):
    organization = make_org("Org")
    inspection = make_inspection(organization, make_user(organization=organization))

    changes = apply_changes(
        inspection,
        {"title": "Nova", "status": "pendente", "organization_id": 999},
        ["title", "status"],
    )
    assert changes == [FieldChange(field="title", old_value="Inspecao", new_value="Nova")]
    assert inspection.organization_id == organization.id


def test_serialize_value():
    assert serialize_value(None) is None
    assert serialize_value("ação") == '"ação"'
    assert serialize_value({"a": 1}) == '{"a": 1}'


def test_audit_rows_cannot_be_updated_through_the_orm(db_session):
    log = models.AuditLog(action="CREATE", resource_type="inspection", resource_id="1")
    db_session.add(log)
    db_session.commit()

    log.action = "DELETE"
    with pytest.raises(models.AppendOnlyViolation):
        db_session.commit()
    db_session.rollback()

    db_session.delete(log)
    with pytest.raises(models.AppendOnlyViolation):
        db_session.commit()
    db_session.rollback()


def test_audit_rows_cannot_be_changed_with_raw_sql(db_session):
    AuditLogger(db_session, "user-1", CallerMeta()).record("CREATE", "inspection", 1, inspection_id=1)

    with pytest.raises(DBAPIError):
        db_session.execute(text("UPDATE audit_logs SET action = 'DELETE'"))
    db_session.rollback()
    with pytest.raises(DBAPIError):
        db_session.execute(text("DELETE FROM audit_logs"))
    db_session.rollback()

    assert db_session.query(models.AuditLog).one().action == "CREATE"


def test_audit_failure_does_not_fail_the_request(
    client, db_session, make_org, make_user, make_inspection, auth_headers, caplog
):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    inspection = make_inspection(organization, inspector)

    with patch.object(AuditLogger, "_write", side_effect=SQLAlchemyError("disco cheio")):
        with caplog.at_level(logging.ERROR, logger="compia.audit"):
            res = client.put(
                f"/api/inspections/{inspection.id}",
                json={"title": "Salva mesmo assim"},
                headers=auth_headers(inspector),
            )

    assert res.status_code == 200
    db_session.refresh(inspection)
    assert inspection.title == "Salva mesmo assim"
    assert db_session.query(models.AuditLog).count() == 0
    assert any("falha ao gravar auditoria" in record.getMessage() for record in caplog.records)


def test_audit_logs_listing_is_tenant_scoped(client, db_session, make_org, make_user, auth_headers):
    own = make_org("Propria")
    other = make_org("Alheia")
    org_admin = make_user(role="org_admin", organization=own, managed=own)
    inspector = make_user(role="inspector", organization=own)
    AuditLogger(db_session, inspector.id).record("UPDATE", "inspection", 1, organization_id=own.id)
    AuditLogger(db_session, inspector.id).record("UPDATE", "inspection", 2, organization_id=other.id)

    res = client.get("/api/audit/logs", headers=auth_headers(org_admin))
    assert res.status_code == 200
    body = res.json()
    assert [log["organization_id"] for log in body["logs"]] == [own.id]
    assert body["pagination"]["total"] == 1

    res = client.get(f"/api/audit/logs?organization_id={other.id}", headers=auth_headers(org_admin))
    assert res.status_code == 403

    res = client.get("/api/audit/logs", headers=auth_headers(inspector))
    assert res.status_code == 403
