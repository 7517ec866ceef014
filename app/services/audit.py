import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db import models

logger = logging.getLogger("compia.audit")
security_logger = logging.getLogger("compia.security")

CREATE = "CREATE"
UPDATE = "UPDATE"
DELETE = "DELETE"


@dataclass(frozen=True)
class CallerMeta:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: Any
    new_value: Any


def caller_meta(request: Request) -> CallerMeta:
    forwarded = request.headers.get("x-forwarded-for")
    ip = request.headers.get("cf-connecting-ip")
    if not ip and forwarded:
        ip = forwarded.split(",")[0].strip()
    if not ip and request.client:
        ip = request.client.host
    return CallerMeta(ip_address=ip or None, user_agent=request.headers.get("user-agent"))


def serialize_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        value = value.isoformat()
    return json.dumps(value, ensure_ascii=False, default=str)


def _comparable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def apply_changes(target: Any, updates: dict[str, Any], allowed_fields: Iterable[str]) -> list[FieldChange]:
    """Aplica apenas campos da allow-list e devolve um FieldChange por campo alterado."""
    changes: list[FieldChange] = []
    for field in allowed_fields:
        if field not in updates:
            continue
        old_value = getattr(target, field)
        new_value = updates[field]
        if _comparable(old_value) == _comparable(new_value):
            continue
        setattr(target, field, new_value)
        changes.append(FieldChange(field=field, old_value=old_value, new_value=new_value))
    return changes


class AuditLogger:
    """
    Trilha de auditoria somente-insercao.

    Deve ser chamada depois do commit da mutacao principal. Falhas de escrita
    vao para o logger compia.audit e nunca sao propagadas ao request.
    """

    def __init__(self, db: Session, actor_id: Optional[str], meta: Optional[CallerMeta] = None):
        self.db = db
        self.actor_id = actor_id
        self.meta = meta or CallerMeta()

    def _write(self, entries: list[Any]) -> None:
        self.db.add_all(entries)
        self.db.commit()

    def _persist(self, entries: list[Any], description: str) -> bool:
        if not entries:
            return True
        try:
            self._write(entries)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("falha ao gravar auditoria %s actor=%s", description, self.actor_id)
            return False
        return True

    def _entry(
        self,
        action: str,
        resource_type: str,
        resource_id: Any,
        inspection_id: Optional[int],
        organization_id: Optional[int],
        field_changed: Optional[str],
        old_value: Any,
        new_value: Any,
    ) -> models.AuditLog:
        return models.AuditLog(
            inspection_id=inspection_id,
            organization_id=organization_id,
            user_id=self.actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            field_changed=field_changed,
            old_value=serialize_value(old_value),
            new_value=serialize_value(new_value),
            ip_address=self.meta.ip_address,
            user_agent=self.meta.user_agent,
        )

    def record(
        self,
        action: str,
        resource_type: str,
        resource_id: Any,
        inspection_id: Optional[int] = None,
        organization_id: Optional[int] = None,
        field_changed: Optional[str] = None,
        old_value: Any = None,
        new_value: Any = None,
    ) -> bool:
        entry = self._entry(
            action,
            resource_type,
            resource_id,
            inspection_id,
            organization_id,
            field_changed,
            old_value,
            new_value,
        )
        return self._persist([entry], f"{action} {resource_type}:{resource_id}")

    def record_changes(
        self,
        changes: list[FieldChange],
        resource_type: str,
        resource_id: Any,
        inspection_id: Optional[int] = None,
        organization_id: Optional[int] = None,
    ) -> bool:
        entries = [
            self._entry(
                UPDATE,
                resource_type,
                resource_id,
                inspection_id,
                organization_id,
                change.field,
                change.old_value,
                change.new_value,
            )
            for change in changes
        ]
        return self._persist(entries, f"UPDATE {resource_type}:{resource_id} campos={len(entries)}")

    def security_event(self, action_type: str, details: dict[str, Any], blocked: bool) -> bool:
        security_logger.warning(
            "evento de seguranca action=%s blocked=%s user_id=%s ip=%s details=%s",
            action_type,
            blocked,
            self.actor_id,
            self.meta.ip_address,
            details,
        )
        event = models.SecurityEvent(
            user_id=self.actor_id,
            action_type=action_type,
            details=details,
            blocked=blocked,
            ip_address=self.meta.ip_address,
            user_agent=self.meta.user_agent,
        )
        return self._persist([event], f"security_event {action_type}")
