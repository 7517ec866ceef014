from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.authorization import assert_organization_access, require_permission
from app.core.errors import NotFound, Unauthorized, ValidationError
from app.core.roles import USERS_APPROVE, UserRole
from app.core.tenant import TenantContext, apply_tenant_filter, require_tenant_scope
from app.db import models
from app.db.session import get_db
from app.services.audit import AuditLogger, apply_changes, caller_meta

router = APIRouter(prefix="/admin/users", tags=["Aprovacao de usuarios"])

ASSIGNABLE_BY_ORG_ADMIN = {UserRole.MANAGER, UserRole.INSPECTOR, UserRole.CLIENT_VIEWER}


class ApprovePayload(BaseModel):
    role: str | None = None
    organization_id: int | None = None


class RejectPayload(BaseModel):
    reason: str | None = None


def _serialize(user: models.User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "organization_id": user.organization_id,
        "approval_status": user.approval_status,
        "approved_by": user.approved_by,
        "approved_at": user.approved_at,
        "rejection_reason": user.rejection_reason,
        "created_at": user.created_at,
    }


def _load_target(db: Session, user_id: str) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise NotFound("Usuario nao encontrado")
    return user


def _assert_can_manage(context: TenantContext, organization_id: int | None, audit: AuditLogger) -> None:
    if context.is_system_admin:
        return
    if organization_id is None:
        raise Unauthorized()
    assert_organization_access(context, organization_id, audit)


@router.get("/pending")
def list_pending_users(
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(USERS_APPROVE)),
):
    require_tenant_scope(context)
    query = db.query(models.User).filter(models.User.approval_status == "pending")
    query = apply_tenant_filter(query, context, models.User.organization_id)
    users = query.order_by(models.User.created_at.asc()).all()
    return {"users": [_serialize(user) for user in users]}


@router.post("/{user_id}/approve")
def approve_user(
    user_id: str,
    payload: ApprovePayload,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(USERS_APPROVE)),
):
    audit = AuditLogger(db, context.principal_id, caller_meta(request))
    target = _load_target(db, user_id)
    if target.approval_status != "pending":
        raise ValidationError("Apenas usuarios pendentes podem ser aprovados")
    organization_id = payload.organization_id if payload.organization_id is not None else target.organization_id
    if target.organization_id is not None:
        _assert_can_manage(context, target.organization_id, audit)
    _assert_can_manage(context, organization_id, audit)
    if organization_id is not None and not db.get(models.Organization, organization_id):
        raise ValidationError("Organizacao nao encontrada")

    role = UserRole.parse(target.role)
    if payload.role is not None:
        if payload.role not in {item.value for item in UserRole}:
            raise ValidationError("Papel invalido")
        role = UserRole(payload.role)
    elif role == UserRole.PENDING:
        role = UserRole.INSPECTOR
    if role == UserRole.PENDING:
        raise ValidationError("Papel invalido para usuario aprovado")
    if not context.is_system_admin and role not in ASSIGNABLE_BY_ORG_ADMIN:
        raise Unauthorized("Papel nao permitido para este aprovador")

    changes = apply_changes(
        target,
        {
            "approval_status": "approved",
            "approved_by": context.principal_id,
            "approved_at": datetime.utcnow(),
            "role": role.value,
            "organization_id": organization_id,
            "rejection_reason": None,
        },
        ["approval_status", "approved_by", "approved_at", "role", "organization_id", "rejection_reason"],
    )
    db.commit()

    audit.record_changes(changes, "user", target.id, organization_id=organization_id)
    return {"success": True, "message": "Usuario aprovado com sucesso", "user": _serialize(target)}


@router.post("/{user_id}/reject")
def reject_user(
    user_id: str,
    payload: RejectPayload,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(USERS_APPROVE)),
):
    audit = AuditLogger(db, context.principal_id, caller_meta(request))
    target = _load_target(db, user_id)
    _assert_can_manage(context, target.organization_id, audit)

    changes = apply_changes(
        target,
        {
            "approval_status": "rejected",
            "approved_by": context.principal_id,
            "rejection_reason": payload.reason,
        },
        ["approval_status", "approved_by", "rejection_reason"],
    )
    db.commit()

    audit.record_changes(changes, "user", target.id, organization_id=target.organization_id)
    return {"success": True, "message": "Usuario rejeitado com sucesso"}
