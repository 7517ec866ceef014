from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.security import get_current_user
from app.core.tenant import TenantContext, get_tenant_context
from app.db import models
from app.db.session import get_db
from app.services.role_permissions import RolePermissionStore

router = APIRouter(tags=["Usuario"])


@router.get("/me")
def get_me(
    current_user: models.User = Depends(get_current_user),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    organization = current_user.organization
    permissions = RolePermissionStore(db).for_role(context.role)
    return {
        "user": {
            "id": current_user.id,
            "email": current_user.email,
            "name": current_user.name,
            "role": context.role.value,
            "organization_id": current_user.organization_id,
            "managed_organization_id": current_user.managed_organization_id,
            "approval_status": current_user.approval_status,
            "is_active": current_user.is_active,
        },
        "organization": (
            {"id": organization.id, "name": organization.name, "type": organization.type}
            if organization
            else None
        ),
        "tenant_context": context.as_dict(),
        "permissions": sorted(code for code, allowed in permissions.items() if allowed),
    }
