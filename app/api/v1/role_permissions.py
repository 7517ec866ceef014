from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.authorization import require_system_admin
from app.core.errors import Unauthorized, ValidationError
from app.core.roles import UserRole
from app.core.tenant import TenantContext, get_tenant_context
from app.db import models
from app.db.session import get_db
from app.services.audit import UPDATE, AuditLogger, caller_meta
from app.services.role_permissions import RolePermissionStore

router = APIRouter(prefix="/role-permissions", tags=["Permissoes"])


class RolePermissionResponse(BaseModel):
    id: int
    role: str
    permission_type: str
    is_allowed: bool
    organization_id: int | None = None


class RolePermissionBatch(BaseModel):
    updates: list[Any] = Field(default_factory=list)


def _to_response(row: models.RolePermission) -> RolePermissionResponse:
    return RolePermissionResponse(
        id=row.id,
        role=row.role,
        permission_type=row.permission_type,
        is_allowed=bool(row.is_allowed),
        organization_id=row.organization_id,
    )


@router.get("", response_model=list[RolePermissionResponse])
def list_role_permissions(
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_system_admin),
):
    return [_to_response(row) for row in RolePermissionStore(db).list_all()]


@router.post("")
def update_role_permissions(
    payload: RolePermissionBatch,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_system_admin),
):
    store = RolePermissionStore(db)
    changed = store.apply_updates(payload.updates)
    db.commit()

    audit = AuditLogger(db, context.principal_id, caller_meta(request))
    audit.record(
        UPDATE,
        "role_permissions",
        None,
        new_value=f"Atualizou {changed} permissões de papel",
    )
    return {"message": "Permissoes atualizadas com sucesso", "updated": changed}


@router.get("/role/{role}")
def get_permissions_for_role(
    role: str,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(get_tenant_context),
):
    if role not in {item.value for item in UserRole}:
        raise ValidationError("Papel invalido")
    parsed = UserRole(role)
    if not context.is_system_admin and context.role != parsed:
        raise Unauthorized()
    return {"role": parsed.value, "permissions": RolePermissionStore(db).for_role(parsed)}


@router.get("/check/{permission_type}")
def check_permission(
    permission_type: str,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(get_tenant_context),
):
    allowed = RolePermissionStore(db).is_allowed(
        context.role, permission_type, context.home_organization_id
    )
    return {"permission_type": permission_type, "role": context.role.value, "allowed": allowed}
