from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.authorization import require_permission
from app.core.errors import Unauthorized
from app.core.roles import AUDIT_VIEW
from app.core.tenant import TenantContext, apply_tenant_filter, require_tenant_scope
from app.db import models
from app.db.session import get_db

router = APIRouter(prefix="/audit", tags=["Auditoria"])


def _serialize(log: models.AuditLog) -> dict:
    return {
        "id": log.id,
        "inspection_id": log.inspection_id,
        "organization_id": log.organization_id,
        "user_id": log.user_id,
        "action": log.action,
        "resource_type": log.resource_type,
        "resource_id": log.resource_id,
        "field_changed": log.field_changed,
        "old_value": log.old_value,
        "new_value": log.new_value,
        "ip_address": log.ip_address,
        "user_agent": log.user_agent,
        "created_at": log.created_at,
    }


@router.get("/logs")
def list_audit_logs(
    action: str | None = None,
    user_id: str | None = None,
    inspection_id: int | None = None,
    organization_id: int | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(AUDIT_VIEW)),
):
    require_tenant_scope(context)
    query = apply_tenant_filter(db.query(models.AuditLog), context, models.AuditLog.organization_id)
    if organization_id is not None:
        if not context.can_access(organization_id):
            raise Unauthorized()
        query = query.filter(models.AuditLog.organization_id == organization_id)
    if action:
        query = query.filter(models.AuditLog.action == action.upper())
    if user_id:
        query = query.filter(models.AuditLog.user_id == user_id)
    if inspection_id is not None:
        query = query.filter(models.AuditLog.inspection_id == inspection_id)

    total = query.with_entities(func.count(models.AuditLog.id)).scalar() or 0
    logs = (
        query.order_by(models.AuditLog.created_at.desc(), models.AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "logs": [_serialize(log) for log in logs],
        "pagination": {"page": page, "limit": limit, "total": total},
    }
