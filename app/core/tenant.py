import logging
from dataclasses import dataclass
from typing import FrozenSet, Optional, Union

from fastapi import Depends
from sqlalchemy import false
from sqlalchemy.orm import Query, Session

from app.core.errors import Unauthorized
from app.core.roles import UserRole
from app.core.security import get_current_user
from app.db import models
from app.db.session import get_db

logger = logging.getLogger("compia.tenant")


class _AllOrganizations:
    """Conjunto universal: contem qualquer organizacao, sem materializar ids."""

    def __contains__(self, item) -> bool:
        return True

    def __repr__(self) -> str:
        return "ALL_ORGANIZATIONS"


ALL_ORGANIZATIONS = _AllOrganizations()

OrganizationSet = Union[FrozenSet[int], _AllOrganizations]


@dataclass(frozen=True)
class TenantContext:
    principal_id: str
    role: UserRole
    is_system_admin: bool
    organization_id: Optional[int]
    managed_organization_id: Optional[int]
    accessible_organization_ids: OrganizationSet

    @property
    def is_empty(self) -> bool:
        if self.is_system_admin:
            return False
        return not self.accessible_organization_ids

    @property
    def home_organization_id(self) -> Optional[int]:
        if self.role == UserRole.ORG_ADMIN and self.managed_organization_id:
            return self.managed_organization_id
        return self.organization_id

    def can_access(self, organization_id: Optional[int]) -> bool:
        if self.is_system_admin:
            return True
        if organization_id is None:
            return False
        return organization_id in self.accessible_organization_ids

    def as_dict(self) -> dict:
        accessible = (
            "all"
            if self.accessible_organization_ids is ALL_ORGANIZATIONS
            else sorted(self.accessible_organization_ids)
        )
        return {
            "principal_id": self.principal_id,
            "role": self.role.value,
            "is_system_admin": self.is_system_admin,
            "organization_id": self.organization_id,
            "managed_organization_id": self.managed_organization_id,
            "accessible_organization_ids": accessible,
        }


def accessible_organizations(db: Session, user: models.User) -> OrganizationSet:
    role = UserRole.parse(user.role)
    if role == UserRole.SYSTEM_ADMIN:
        return ALL_ORGANIZATIONS
    if role == UserRole.ORG_ADMIN and user.managed_organization_id:
        managed_id = user.managed_organization_id
        # Um unico nivel de filhas, lido em uma so consulta; netas ficam de fora.
        children = (
            db.query(models.Organization.id)
            .filter(models.Organization.parent_organization_id == managed_id)
            .all()
        )
        return frozenset({managed_id, *(child_id for (child_id,) in children)})
    if user.organization_id:
        return frozenset({user.organization_id})
    return frozenset()


def resolve_tenant_context(db: Session, user: models.User) -> TenantContext:
    role = UserRole.parse(user.role)
    accessible = accessible_organizations(db, user)
    context = TenantContext(
        principal_id=user.id,
        role=role,
        is_system_admin=role == UserRole.SYSTEM_ADMIN,
        organization_id=user.organization_id,
        managed_organization_id=user.managed_organization_id if role == UserRole.ORG_ADMIN else None,
        accessible_organization_ids=accessible,
    )
    if context.is_empty:
        logger.info("tenant context vazio user_id=%s role=%s", user.id, role.value)
    return context


def get_tenant_context(
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TenantContext:
    return resolve_tenant_context(db, user)


def require_tenant_scope(context: TenantContext) -> TenantContext:
    if context.is_empty:
        raise Unauthorized("Seu perfil nao possui organizacao vinculada.")
    return context


def apply_tenant_filter(query: Query, context: TenantContext, column) -> Query:
    if context.is_system_admin:
        return query
    if context.is_empty:
        return query.filter(false())
    return query.filter(column.in_(sorted(context.accessible_organization_ids)))
