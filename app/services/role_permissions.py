import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from app.core.roles import DEFAULT_ROLE_PERMISSIONS, PERMISSION_TYPES, UserRole
from app.db import models

logger = logging.getLogger("compia")


@dataclass
class PermissionUpdate:
    role: str
    permission_type: str
    is_allowed: bool


class RolePermissionStore:
    def __init__(self, db: Session):
        self.db = db

    def _row(
        self, role: str, permission_type: str, organization_id: Optional[int]
    ) -> Optional[models.RolePermission]:
        query = self.db.query(models.RolePermission).filter(
            models.RolePermission.role == role,
            models.RolePermission.permission_type == permission_type,
        )
        if organization_id is None:
            query = query.filter(models.RolePermission.organization_id.is_(None))
        else:
            query = query.filter(models.RolePermission.organization_id == organization_id)
        return query.first()

    def is_allowed(
        self, role: UserRole, permission_type: str, organization_id: Optional[int] = None
    ) -> bool:
        if role == UserRole.SYSTEM_ADMIN:
            return True
        if organization_id is not None:
            scoped = self._row(role.value, permission_type, organization_id)
            if scoped is not None:
                return bool(scoped.is_allowed)
        row = self._row(role.value, permission_type, None)
        if row is None:
            return False
        return bool(row.is_allowed)

    def list_all(self) -> list[models.RolePermission]:
        return (
            self.db.query(models.RolePermission)
            .order_by(models.RolePermission.role, models.RolePermission.permission_type)
            .all()
        )

    def for_role(self, role: UserRole) -> dict[str, bool]:
        if role == UserRole.SYSTEM_ADMIN:
            return {permission_type: True for permission_type in PERMISSION_TYPES}
        rows = (
            self.db.query(models.RolePermission)
            .filter(
                models.RolePermission.role == role.value,
                models.RolePermission.organization_id.is_(None),
            )
            .all()
        )
        stored = {row.permission_type: bool(row.is_allowed) for row in rows}
        return {permission_type: stored.get(permission_type, False) for permission_type in PERMISSION_TYPES}

    def apply_updates(self, updates: Iterable[dict]) -> int:
        """Upsert idempotente; itens invalidos sao ignorados. Retorna quantas linhas mudaram."""
        changed = 0
        for raw in updates:
            update = _parse_update(raw)
            if update is None:
                logger.info("atualizacao de permissao ignorada payload=%s", raw)
                continue
            row = self._row(update.role, update.permission_type, None)
            if row is None:
                self.db.add(
                    models.RolePermission(
                        role=update.role,
                        permission_type=update.permission_type,
                        is_allowed=update.is_allowed,
                    )
                )
                self.db.flush()
                changed += 1
            elif bool(row.is_allowed) != update.is_allowed:
                row.is_allowed = update.is_allowed
                changed += 1
        return changed


def _parse_update(raw) -> Optional[PermissionUpdate]:
    if not isinstance(raw, dict):
        return None
    role = raw.get("role")
    permission_type = raw.get("permission_type")
    is_allowed = raw.get("is_allowed")
    if not isinstance(role, str) or not isinstance(permission_type, str) or not isinstance(is_allowed, bool):
        return None
    if role not in {item.value for item in UserRole} or role == UserRole.SYSTEM_ADMIN.value:
        return None
    return PermissionUpdate(role=role, permission_type=permission_type, is_allowed=is_allowed)


def ensure_default_role_permissions(db: Session) -> int:
    created = 0
    for role, granted in DEFAULT_ROLE_PERMISSIONS.items():
        for permission_type in PERMISSION_TYPES:
            exists = (
                db.query(models.RolePermission.id)
                .filter(
                    models.RolePermission.role == role.value,
                    models.RolePermission.permission_type == permission_type,
                    models.RolePermission.organization_id.is_(None),
                )
                .first()
            )
            if exists:
                continue
            db.add(
                models.RolePermission(
                    role=role.value,
                    permission_type=permission_type,
                    is_allowed=permission_type in granted,
                )
            )
            created += 1
    if created:
        db.commit()
    return created
