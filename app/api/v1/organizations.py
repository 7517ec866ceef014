from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.core.authorization import (
    assert_organization_access,
    reject_organization_change,
    require_permission,
)
from app.core.errors import ValidationError
from app.core.roles import ORGANIZATIONS_CREATE, ORGANIZATIONS_DELETE, ORGANIZATIONS_EDIT, UserRole
from app.core.tenant import TenantContext, get_tenant_context, require_tenant_scope
from app.db import models
from app.db.session import get_db
from app.services.audit import CREATE, DELETE, AuditLogger, apply_changes, caller_meta
from app.services.organizations import (
    MUTABLE_FIELDS,
    ORGANIZATION_TYPES,
    OrganizationLifecycleManager,
    derive_level,
)

router = APIRouter(prefix="/organizations", tags=["Organizacoes"])


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1)
    type: str = "company"
    description: str | None = None
    logo_url: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    address: str | None = None
    cnpj: str | None = None
    razao_social: str | None = None
    nome_fantasia: str | None = None
    website: str | None = None
    parent_organization_id: int | None = None
    subscription_plan: str = "basic"
    max_users: int = 50
    max_subsidiaries: int = 0


class OrganizationUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    organization_id: int | None = None
    name: str | None = Field(default=None, min_length=1)
    type: str | None = None
    description: str | None = None
    logo_url: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    address: str | None = None
    cnpj: str | None = None
    razao_social: str | None = None
    nome_fantasia: str | None = None
    website: str | None = None
    subscription_plan: str | None = None
    max_users: int | None = None
    max_subsidiaries: int | None = None


def _serialize(
    organization: models.Organization,
    user_count: int | None = None,
    subsidiary_count: int | None = None,
) -> dict:
    data = {
        "id": organization.id,
        "name": organization.name,
        "type": organization.type,
        "description": organization.description,
        "logo_url": organization.logo_url,
        "contact_email": organization.contact_email,
        "contact_phone": organization.contact_phone,
        "address": organization.address,
        "cnpj": organization.cnpj,
        "razao_social": organization.razao_social,
        "nome_fantasia": organization.nome_fantasia,
        "website": organization.website,
        "parent_organization_id": organization.parent_organization_id,
        "parent_organization_name": organization.parent.name if organization.parent else None,
        "organization_level": organization.organization_level,
        "subscription_status": organization.subscription_status,
        "subscription_plan": organization.subscription_plan,
        "max_users": organization.max_users,
        "max_subsidiaries": organization.max_subsidiaries,
        "is_active": organization.is_active,
        "created_at": organization.created_at,
        "updated_at": organization.updated_at,
    }
    if user_count is not None:
        data["user_count"] = user_count
    if subsidiary_count is not None:
        data["subsidiary_count"] = subsidiary_count
    return data


def _snapshot(organization: models.Organization) -> dict:
    return {column.name: getattr(organization, column.name) for column in organization.__table__.columns}


@router.get("")
def list_organizations(
    db: Session = Depends(get_db),
    context: TenantContext = Depends(get_tenant_context),
):
    require_tenant_scope(context)
    manager = OrganizationLifecycleManager(db)
    organizations = manager.list_visible(context)
    ids = [organization.id for organization in organizations]
    user_counts = manager.user_counts(ids)
    subsidiary_counts = manager.subsidiary_counts(ids)
    return {
        "organizations": [
            _serialize(organization, user_counts.get(organization.id, 0), subsidiary_counts.get(organization.id, 0))
            for organization in organizations
        ],
        "userCounts": user_counts,
    }


@router.get("/stats")
def organization_stats(
    db: Session = Depends(get_db),
    context: TenantContext = Depends(get_tenant_context),
):
    require_tenant_scope(context)
    return OrganizationLifecycleManager(db).stats(context)


@router.get("/{organization_id}")
def get_organization(
    organization_id: int,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(get_tenant_context),
):
    require_tenant_scope(context)
    manager = OrganizationLifecycleManager(db)
    organization = manager.get(organization_id)
    assert_organization_access(
        context, organization.id, AuditLogger(db, context.principal_id, caller_meta(request))
    )
    return _serialize(
        organization,
        manager.user_counts([organization.id]).get(organization.id, 0),
        manager.subsidiary_counts([organization.id]).get(organization.id, 0),
    )


@router.post("", status_code=201)
def create_organization(
    payload: OrganizationCreate,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(ORGANIZATIONS_CREATE)),
):
    require_tenant_scope(context)
    if payload.type not in ORGANIZATION_TYPES:
        raise ValidationError("Tipo de organizacao invalido")

    manager = OrganizationLifecycleManager(db)
    parent_id = payload.parent_organization_id
    if context.role == UserRole.ORG_ADMIN:
        # Org admin sempre cria abaixo da organizacao que administra.
        parent_id = context.managed_organization_id
    elif not context.is_system_admin:
        parent_id = context.home_organization_id
    manager.validate_parent(None, parent_id)

    data = payload.model_dump(exclude={"parent_organization_id"})
    organization = models.Organization(
        **data,
        parent_organization_id=parent_id,
        organization_level=derive_level(payload.type, parent_id),
        subscription_status="active",
        is_active=True,
    )
    db.add(organization)
    db.flush()
    organization_id = organization.id
    db.commit()
    db.refresh(organization)

    audit = AuditLogger(db, context.principal_id, caller_meta(request))
    audit.record(
        CREATE,
        "organization",
        organization_id,
        organization_id=organization_id,
        new_value=_snapshot(organization),
    )
    return {"id": organization_id, "message": "Organizacao criada com sucesso"}


@router.put("/{organization_id}")
def update_organization(
    organization_id: int,
    payload: OrganizationUpdate,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(ORGANIZATIONS_EDIT)),
):
    audit = AuditLogger(db, context.principal_id, caller_meta(request))
    manager = OrganizationLifecycleManager(db)
    organization = manager.get(organization_id)
    assert_organization_access(context, organization.id, audit)

    updates = payload.model_dump(exclude_unset=True)
    reject_organization_change(updates, organization.id, audit, "organization", organization.id)
    if "type" in updates and updates["type"] not in ORGANIZATION_TYPES:
        raise ValidationError("Tipo de organizacao invalido")
    if "name" in updates and not updates["name"]:
        raise ValidationError("Nome da organizacao e obrigatorio")

    changes = apply_changes(organization, updates, MUTABLE_FIELDS)
    if not changes:
        return {"message": "Nenhum campo para atualizar", "changed_fields": []}
    if any(change.field == "type" for change in changes):
        organization.organization_level = derive_level(organization.type, organization.parent_organization_id)
    db.commit()

    audit.record_changes(changes, "organization", organization.id, organization_id=organization.id)
    return {
        "message": "Organizacao atualizada com sucesso",
        "changed_fields": [change.field for change in changes],
    }


@router.delete("/{organization_id}")
def delete_organization(
    organization_id: int,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(ORGANIZATIONS_DELETE)),
):
    audit = AuditLogger(db, context.principal_id, caller_meta(request))
    manager = OrganizationLifecycleManager(db)
    organization = manager.get(organization_id)
    assert_organization_access(context, organization.id, audit)

    snapshot = _snapshot(organization)
    manager.soft_delete(organization)
    db.commit()

    audit.record(
        DELETE,
        "organization",
        organization_id,
        organization_id=organization_id,
        old_value=snapshot,
    )
    return {
        "message": "Organizacao excluida com sucesso",
        "note": "A organizacao foi desativada mas seus dados foram preservados.",
    }
