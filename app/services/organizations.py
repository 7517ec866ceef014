import logging
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import NotFound, ReferentialBlock, ValidationError
from app.core.tenant import ALL_ORGANIZATIONS, TenantContext, apply_tenant_filter
from app.db import models

logger = logging.getLogger("compia")

LEVEL_MASTER = "master"
LEVEL_COMPANY = "company"
LEVEL_SUBSIDIARY = "subsidiary"

ORGANIZATION_TYPES = {"company", "consultancy", "client"}

MUTABLE_FIELDS = [
    "name",
    "type",
    "description",
    "logo_url",
    "contact_email",
    "contact_phone",
    "address",
    "cnpj",
    "razao_social",
    "nome_fantasia",
    "website",
    "subscription_plan",
    "max_users",
    "max_subsidiaries",
]


def derive_level(organization_type: str, parent_organization_id: Optional[int]) -> str:
    if parent_organization_id:
        return LEVEL_SUBSIDIARY
    if organization_type == "consultancy":
        return LEVEL_MASTER
    return LEVEL_COMPANY


class OrganizationLifecycleManager:
    def __init__(self, db: Session):
        self.db = db

    def get(self, organization_id: int) -> models.Organization:
        organization = self.db.get(models.Organization, organization_id)
        if not organization:
            raise NotFound("Organizacao nao encontrada")
        return organization

    def validate_parent(self, organization_id: Optional[int], parent_organization_id: Optional[int]) -> None:
        if parent_organization_id is None:
            return
        if organization_id is not None and parent_organization_id == organization_id:
            raise ValidationError("Uma organizacao nao pode ser subsidiaria de si mesma")
        parent = self.db.get(models.Organization, parent_organization_id)
        if not parent or not parent.is_active:
            raise ValidationError("Organizacao pai nao encontrada")

    def blocking_counts(self, organization_id: int) -> list[tuple[str, int]]:
        active_users = (
            self.db.query(func.count(models.User.id))
            .filter(models.User.organization_id == organization_id, models.User.is_active.is_(True))
            .scalar()
        )
        active_subsidiaries = (
            self.db.query(func.count(models.Organization.id))
            .filter(
                models.Organization.parent_organization_id == organization_id,
                models.Organization.is_active.is_(True),
            )
            .scalar()
        )
        inspections = (
            self.db.query(func.count(models.Inspection.id))
            .filter(models.Inspection.organization_id == organization_id)
            .scalar()
        )
        return [
            (ReferentialBlock.HAS_USERS, active_users or 0),
            (ReferentialBlock.HAS_SUBSIDIARIES, active_subsidiaries or 0),
            (ReferentialBlock.HAS_INSPECTIONS, inspections or 0),
        ]

    def soft_delete(self, organization: models.Organization) -> None:
        """Desativa a organizacao; bloqueia enquanto houver usuarios, subsidiarias ou inspecoes."""
        for reason, count in self.blocking_counts(organization.id):
            if count:
                logger.info(
                    "exclusao de organizacao bloqueada organization_id=%s reason=%s count=%s",
                    organization.id,
                    reason,
                    count,
                )
                raise ReferentialBlock(reason, count)
        organization.is_active = False

    def user_counts(self, organization_ids: Iterable[int]) -> dict[int, int]:
        ids = list(organization_ids)
        if not ids:
            return {}
        rows = (
            self.db.query(models.User.organization_id, func.count(models.User.id))
            .filter(models.User.organization_id.in_(ids), models.User.is_active.is_(True))
            .group_by(models.User.organization_id)
            .all()
        )
        counts = {organization_id: 0 for organization_id in ids}
        counts.update({organization_id: total for organization_id, total in rows})
        return counts

    def subsidiary_counts(self, organization_ids: Iterable[int]) -> dict[int, int]:
        ids = list(organization_ids)
        if not ids:
            return {}
        rows = (
            self.db.query(models.Organization.parent_organization_id, func.count(models.Organization.id))
            .filter(
                models.Organization.parent_organization_id.in_(ids),
                models.Organization.is_active.is_(True),
            )
            .group_by(models.Organization.parent_organization_id)
            .all()
        )
        return {parent_id: total for parent_id, total in rows}

    def list_visible(self, context: TenantContext) -> list[models.Organization]:
        query = self.db.query(models.Organization).filter(models.Organization.is_active.is_(True))
        query = apply_tenant_filter(query, context, models.Organization.id)
        return query.order_by(
            models.Organization.parent_organization_id.isnot(None),
            models.Organization.name,
        ).all()

    def stats(self, context: TenantContext) -> dict:
        if context.accessible_organization_ids is ALL_ORGANIZATIONS:
            by_level = dict(
                self.db.query(models.Organization.organization_level, func.count(models.Organization.id))
                .filter(models.Organization.is_active.is_(True))
                .group_by(models.Organization.organization_level)
                .all()
            )
            total_users = (
                self.db.query(func.count(models.User.id)).filter(models.User.is_active.is_(True)).scalar()
            )
            return {
                "totalMasterOrgs": by_level.get(LEVEL_MASTER, 0),
                "totalCompanies": by_level.get(LEVEL_COMPANY, 0),
                "totalSubsidiaries": by_level.get(LEVEL_SUBSIDIARY, 0),
                "totalUsers": total_users or 0,
            }

        org_ids = sorted(context.accessible_organization_ids)

        def _count_inspections(*statuses: str) -> int:
            return (
                self.db.query(func.count(models.Inspection.id))
                .filter(
                    models.Inspection.organization_id.in_(org_ids),
                    models.Inspection.status.in_(statuses),
                )
                .scalar()
                or 0
            )

        total_users = (
            self.db.query(func.count(models.User.id))
            .filter(models.User.organization_id.in_(org_ids), models.User.is_active.is_(True))
            .scalar()
        )
        subsidiaries = 0
        if context.managed_organization_id:
            subsidiaries = (
                self.db.query(func.count(models.Organization.id))
                .filter(
                    models.Organization.parent_organization_id == context.managed_organization_id,
                    models.Organization.is_active.is_(True),
                )
                .scalar()
            )
        return {
            "userManagedStats": {
                "totalUsers": total_users or 0,
                "totalSubsidiaries": subsidiaries or 0,
                "pendingInspections": _count_inspections("pendente"),
                "activeInspections": _count_inspections("em_andamento"),
            }
        }
