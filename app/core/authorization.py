import logging
from typing import Any, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from app.core.errors import ImmutableFieldViolation, Unauthorized
from app.core.roles import UserRole
from app.core.tenant import TenantContext, get_tenant_context, require_tenant_scope
from app.db import models
from app.db.session import get_db
from app.services.audit import AuditLogger
from app.services.role_permissions import RolePermissionStore

logger = logging.getLogger("compia.security")

ORGANIZATION_IMMUTABLE_MESSAGE = "Nao e possivel alterar a organizacao"


def require_permission(permission_type: str):
    def _dependency(
        context: TenantContext = Depends(get_tenant_context),
        db: Session = Depends(get_db),
    ) -> TenantContext:
        store = RolePermissionStore(db)
        if not store.is_allowed(context.role, permission_type, context.home_organization_id):
            logger.info(
                "permissao negada user_id=%s role=%s permission=%s",
                context.principal_id,
                context.role.value,
                permission_type,
            )
            raise Unauthorized()
        return context

    return _dependency


def require_roles(*roles: UserRole):
    def _dependency(context: TenantContext = Depends(get_tenant_context)) -> TenantContext:
        if context.is_system_admin or context.role in roles:
            return context
        raise Unauthorized()

    return _dependency


def require_system_admin(context: TenantContext = Depends(get_tenant_context)) -> TenantContext:
    if not context.is_system_admin:
        raise Unauthorized("Apenas administradores do sistema")
    return context


def resolve_create_organization(
    context: TenantContext,
    requested_organization_id: Any,
    audit: AuditLogger,
    resource_type: str,
) -> Optional[int]:
    """
    Organizacao efetiva de um novo registro: sempre a do contexto.
    Um organization_id divergente no corpo e descartado e registrado como evento de seguranca.
    """
    require_tenant_scope(context)
    effective = context.home_organization_id
    if effective is None and not context.is_system_admin:
        raise Unauthorized("Seu perfil nao possui organizacao vinculada.")
    if requested_organization_id is not None and requested_organization_id != effective:
        audit.security_event(
            "tenant_id_injection",
            {
                "resource_type": resource_type,
                "requested_organization_id": requested_organization_id,
                "effective_organization_id": effective,
            },
            blocked=True,
        )
    return effective


def assert_organization_access(
    context: TenantContext,
    organization_id: Optional[int],
    audit: Optional[AuditLogger] = None,
) -> None:
    require_tenant_scope(context)
    if context.can_access(organization_id):
        return
    if audit is not None:
        audit.security_event(
            "cross_tenant_access",
            {"resource_type": "organization", "organization_id": organization_id},
            blocked=True,
        )
    raise Unauthorized()


def assert_inspection_access(
    context: TenantContext,
    inspection: models.Inspection,
    audit: Optional[AuditLogger] = None,
) -> None:
    require_tenant_scope(context)
    if context.can_access(inspection.organization_id):
        return
    if inspection.created_by == context.principal_id:
        return
    if audit is not None:
        audit.security_event(
            "cross_tenant_access",
            {
                "resource_type": "inspection",
                "inspection_id": inspection.id,
                "organization_id": inspection.organization_id,
            },
            blocked=True,
        )
    raise Unauthorized()


def reject_organization_change(
    payload: dict[str, Any],
    current_organization_id: Optional[int],
    audit: AuditLogger,
    resource_type: str,
    resource_id: Any,
) -> None:
    """Rejeita qualquer troca de organization_id; o mesmo valor atual e aceito e ignorado."""
    if "organization_id" not in payload:
        return
    requested = payload["organization_id"]
    if requested == current_organization_id:
        return
    audit.security_event(
        "organization_change_attempt",
        {
            "resource_type": resource_type,
            "resource_id": resource_id,
            "current_organization_id": current_organization_id,
            "requested_organization_id": requested,
        },
        blocked=True,
    )
    raise ImmutableFieldViolation("organization_id", ORGANIZATION_IMMUTABLE_MESSAGE)
