from enum import Enum
from typing import Optional


class UserRole(str, Enum):
    SYSTEM_ADMIN = "system_admin"
    ORG_ADMIN = "org_admin"
    MANAGER = "manager"
    INSPECTOR = "inspector"
    CLIENT_VIEWER = "client_viewer"
    PENDING = "pending"

    @classmethod
    def parse(cls, value: Optional[str]) -> "UserRole":
        # Roles desconhecidos caem em pending e nao autorizam nada.
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.PENDING


INSPECTIONS_CREATE = "inspections.create"
INSPECTIONS_EDIT = "inspections.edit"
INSPECTIONS_DELETE = "inspections.delete"
ORGANIZATIONS_CREATE = "organizations.create"
ORGANIZATIONS_EDIT = "organizations.edit"
ORGANIZATIONS_DELETE = "organizations.delete"
ACTION_ITEMS_CREATE = "action_items.create"
AUDIT_VIEW = "audit.view"
USERS_APPROVE = "users.approve"

PERMISSION_TYPES = [
    INSPECTIONS_CREATE,
    INSPECTIONS_EDIT,
    INSPECTIONS_DELETE,
    ORGANIZATIONS_CREATE,
    ORGANIZATIONS_EDIT,
    ORGANIZATIONS_DELETE,
    ACTION_ITEMS_CREATE,
    AUDIT_VIEW,
    USERS_APPROVE,
]

_FIELD_WORK = [INSPECTIONS_CREATE, INSPECTIONS_EDIT, INSPECTIONS_DELETE, ACTION_ITEMS_CREATE]

DEFAULT_ROLE_PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.ORG_ADMIN: list(PERMISSION_TYPES),
    UserRole.MANAGER: list(_FIELD_WORK),
    UserRole.INSPECTOR: list(_FIELD_WORK),
    UserRole.CLIENT_VIEWER: [],
    UserRole.PENDING: [],
}
