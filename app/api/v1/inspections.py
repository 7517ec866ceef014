import logging
from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.authorization import (
    assert_inspection_access,
    reject_organization_change,
    require_permission,
    resolve_create_organization,
)
from app.core.errors import NotFound, ValidationError
from app.core.roles import ACTION_ITEMS_CREATE, INSPECTIONS_CREATE, INSPECTIONS_DELETE, INSPECTIONS_EDIT
from app.core.tenant import TenantContext, get_tenant_context, require_tenant_scope
from app.db import models
from app.db.session import get_db
from app.services import action_items as action_item_service
from app.services.audit import CREATE, DELETE, AuditLogger, FieldChange, apply_changes, caller_meta
from app.services.compliance import FIELD_TYPES, classify_response, compliance_summary
from app.services.escalation import evaluate_escalation

logger = logging.getLogger("compia")

router = APIRouter(prefix="/inspections", tags=["Inspecoes"])

INSPECTION_STATUSES = {"pendente", "em_andamento", "concluida", "cancelada"}
PRIORITIES = {"baixa", "media", "alta", "critica"}

MUTABLE_FIELDS = [
    "title",
    "description",
    "location",
    "inspector_name",
    "inspector_email",
    "company_name",
    "cep",
    "address",
    "scheduled_date",
    "logradouro",
    "numero",
    "complemento",
    "bairro",
    "cidade",
    "uf",
    "sectors",
    "completed_date",
    "status",
    "priority",
    "action_plan",
    "action_plan_type",
    "inspector_signature",
    "responsible_signature",
    "responsible_name",
    "responsible_email",
    "location_end_lat",
    "location_end_lng",
]


class InspectionItemCreate(BaseModel):
    category: str = "Geral"
    item_description: str = Field(..., min_length=1)
    field_type: str = "boolean"
    response_value: Any = None
    comment: str | None = None
    compliance_status: str | None = None


class InspectionCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(..., min_length=1)
    organization_id: int | None = None
    description: str | None = None
    location: str | None = None
    company_name: str | None = None
    cep: str | None = None
    address: str | None = None
    logradouro: str | None = None
    numero: str | None = None
    complemento: str | None = None
    bairro: str | None = None
    cidade: str | None = None
    uf: str | None = None
    sectors: list[str] | None = None
    inspector_name: str | None = None
    inspector_email: str | None = None
    responsible_name: str | None = None
    responsible_email: str | None = None
    status: str = "pendente"
    priority: str = "media"
    scheduled_date: date | None = None
    action_plan: str | None = None
    action_plan_type: str | None = None
    device_fingerprint: str | None = None
    device_model: str | None = None
    location_start_lat: float | None = None
    location_start_lng: float | None = None
    started_at_user_time: datetime | None = None
    items: list[InspectionItemCreate] = Field(default_factory=list)


class InspectionUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    organization_id: int | None = None
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    location: str | None = None
    inspector_name: str | None = None
    inspector_email: str | None = None
    company_name: str | None = None
    cep: str | None = None
    address: str | None = None
    scheduled_date: date | None = None
    logradouro: str | None = None
    numero: str | None = None
    complemento: str | None = None
    bairro: str | None = None
    cidade: str | None = None
    uf: str | None = None
    sectors: list[str] | None = None
    completed_date: date | None = None
    status: str | None = None
    priority: str | None = None
    action_plan: str | None = None
    action_plan_type: str | None = None
    inspector_signature: str | None = None
    responsible_signature: str | None = None
    responsible_name: str | None = None
    responsible_email: str | None = None
    location_end_lat: float | None = None
    location_end_lng: float | None = None


class FinalizePayload(BaseModel):
    inspector_signature: str | None = None
    responsible_signature: str | None = None
    responsible_name: str | None = None
    responsible_email: str | None = None


class ReopenPayload(BaseModel):
    justification: str | None = None


class ResponsePayload(BaseModel):
    response_value: Any = None
    comment: str | None = None
    compliance_status: str | None = None
    field_type: str | None = None


class ActionItemCreate(BaseModel):
    inspection_item_id: int | None = None
    field_name: str | None = None
    title: str | None = None
    what_description: str | None = None
    why_reason: str | None = None
    where_location: str | None = None
    when_deadline: date | None = None
    who_responsible: str | None = None
    how_method: str | None = None
    how_much_cost: str | None = None
    priority: str | None = None
    status: str | None = None


class CreateActionPayload(BaseModel):
    response_value: Any = None
    field_type: str | None = None
    compliance_status: str | None = None
    pre_analysis: str | None = None
    media_data: list[Any] = Field(default_factory=list)
    use_ai: bool = True


def _columns(obj) -> dict:
    return {column.name: getattr(obj, column.name) for column in obj.__table__.columns}


def _serialize_item(item: models.InspectionItem) -> dict:
    return _columns(item)


def _snapshot(inspection: models.Inspection) -> dict:
    snapshot = _columns(inspection)
    snapshot["items"] = [
        {
            "id": item.id,
            "item_description": item.item_description,
            "field_type": item.field_type,
            "compliance_status": item.compliance_status,
        }
        for item in inspection.items
    ]
    snapshot["action_item_ids"] = [action.id for action in inspection.action_items]
    return snapshot


def _validate_status_fields(values: dict) -> None:
    if values.get("status") is not None and values["status"] not in INSPECTION_STATUSES:
        raise ValidationError("Status de inspecao invalido")
    if values.get("priority") is not None and values["priority"] not in PRIORITIES:
        raise ValidationError("Prioridade invalida")


def _validate_field_type(field_type: str) -> None:
    if field_type not in FIELD_TYPES:
        raise ValidationError(f"Tipo de campo invalido: {field_type}")


def _load_inspection(
    db: Session,
    inspection_id: int,
    context: TenantContext,
    audit: AuditLogger,
) -> models.Inspection:
    require_tenant_scope(context)
    inspection = db.get(models.Inspection, inspection_id)
    if not inspection:
        raise NotFound("Inspecao nao encontrada")
    assert_inspection_access(context, inspection, audit)
    return inspection


def _load_item(db: Session, inspection: models.Inspection, item_id: int) -> models.InspectionItem:
    item = (
        db.query(models.InspectionItem)
        .filter(models.InspectionItem.id == item_id, models.InspectionItem.inspection_id == inspection.id)
        .first()
    )
    if not item:
        raise NotFound("Item de inspecao nao encontrado")
    return item


def _audit(db: Session, context: TenantContext, request: Request) -> AuditLogger:
    return AuditLogger(db, context.principal_id, caller_meta(request))


@router.get("")
def list_inspections(
    status_filter: str | None = None,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(get_tenant_context),
):
    require_tenant_scope(context)
    query = db.query(models.Inspection)
    if not context.is_system_admin:
        query = query.filter(
            or_(
                models.Inspection.organization_id.in_(sorted(context.accessible_organization_ids)),
                models.Inspection.created_by == context.principal_id,
            )
        )
    if status_filter:
        query = query.filter(models.Inspection.status == status_filter)
    inspections = query.order_by(models.Inspection.created_at.desc(), models.Inspection.id.desc()).all()
    return {"inspections": [_columns(inspection) for inspection in inspections]}


@router.get("/{inspection_id}")
def get_inspection(
    inspection_id: int,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(get_tenant_context),
):
    inspection = _load_inspection(db, inspection_id, context, _audit(db, context, request))
    return {
        "inspection": _columns(inspection),
        "items": [_serialize_item(item) for item in inspection.items],
        "action_items": [_columns(action) for action in inspection.action_items],
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_inspection(
    payload: InspectionCreate,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(INSPECTIONS_CREATE)),
):
    audit = _audit(db, context, request)
    organization_id = resolve_create_organization(context, payload.organization_id, audit, "inspection")
    data = payload.model_dump(exclude={"organization_id", "items"})
    _validate_status_fields(data)
    for item in payload.items:
        _validate_field_type(item.field_type)

    inspection = models.Inspection(**data, organization_id=organization_id, created_by=context.principal_id)
    db.add(inspection)
    db.flush()
    inspection_id = inspection.id

    for item in payload.items:
        responses = None
        if item.response_value is not None or item.comment:
            responses = {
                "field_type": item.field_type,
                "response_value": item.response_value,
                "comment": item.comment,
            }
        db.add(
            models.InspectionItem(
                inspection_id=inspection_id,
                category=item.category,
                item_description=item.item_description,
                field_type=item.field_type,
                field_responses=responses,
                compliance_status=classify_response(item.field_type, item.response_value, item.compliance_status),
            )
        )
    db.commit()
    db.refresh(inspection)

    audit.record(
        CREATE,
        "inspection",
        inspection_id,
        inspection_id=inspection_id,
        organization_id=organization_id,
        new_value=_snapshot(inspection),
    )
    return {
        "id": inspection_id,
        "organization_id": organization_id,
        "message": "Inspecao criada com sucesso",
    }


@router.put("/{inspection_id}")
def update_inspection(
    inspection_id: int,
    payload: InspectionUpdate,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(INSPECTIONS_EDIT)),
):
    audit = _audit(db, context, request)
    inspection = _load_inspection(db, inspection_id, context, audit)

    updates = payload.model_dump(exclude_unset=True)
    reject_organization_change(updates, inspection.organization_id, audit, "inspection", inspection.id)
    _validate_status_fields(updates)
    if "title" in updates and not updates["title"]:
        raise ValidationError("Titulo e obrigatorio")

    changes = apply_changes(inspection, updates, MUTABLE_FIELDS)
    if not changes:
        return {"message": "Nenhum campo para atualizar", "changed_fields": []}
    db.commit()

    audit.record_changes(
        changes,
        "inspection",
        inspection.id,
        inspection_id=inspection.id,
        organization_id=inspection.organization_id,
    )
    return {
        "message": "Inspecao atualizada com sucesso",
        "changed_fields": [change.field for change in changes],
    }


@router.delete("/{inspection_id}")
def delete_inspection(
    inspection_id: int,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(INSPECTIONS_DELETE)),
):
    audit = _audit(db, context, request)
    inspection = _load_inspection(db, inspection_id, context, audit)

    snapshot = _snapshot(inspection)
    organization_id = inspection.organization_id
    db.delete(inspection)
    db.commit()

    audit.record(
        DELETE,
        "inspection",
        inspection_id,
        inspection_id=inspection_id,
        organization_id=organization_id,
        old_value=snapshot,
    )
    return {"message": "Inspecao excluida com sucesso"}


@router.post("/{inspection_id}/finalize")
def finalize_inspection(
    inspection_id: int,
    payload: FinalizePayload,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(INSPECTIONS_EDIT)),
):
    audit = _audit(db, context, request)
    inspection = _load_inspection(db, inspection_id, context, audit)

    inspector_signature = payload.inspector_signature or inspection.inspector_signature
    responsible_signature = payload.responsible_signature or inspection.responsible_signature
    if not inspector_signature or not responsible_signature:
        raise ValidationError("Ambas assinaturas sao obrigatorias")

    updates: dict[str, Any] = {
        "status": "concluida",
        "completed_date": date.today(),
        "inspector_signature": inspector_signature,
        "responsible_signature": responsible_signature,
    }
    if payload.responsible_name is not None:
        updates["responsible_name"] = payload.responsible_name
    if payload.responsible_email is not None:
        updates["responsible_email"] = payload.responsible_email

    changes = apply_changes(inspection, updates, list(updates))
    db.commit()

    audit.record_changes(
        changes,
        "inspection",
        inspection.id,
        inspection_id=inspection.id,
        organization_id=inspection.organization_id,
    )
    return {"success": True, "message": "Inspecao finalizada com sucesso"}


@router.post("/{inspection_id}/reopen")
def reopen_inspection(
    inspection_id: int,
    payload: ReopenPayload,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(INSPECTIONS_EDIT)),
):
    justification = (payload.justification or "").strip()
    if not justification:
        raise ValidationError("Justificativa e obrigatoria para reabrir a inspecao")

    audit = _audit(db, context, request)
    inspection = _load_inspection(db, inspection_id, context, audit)
    if inspection.status != "concluida":
        raise ValidationError("Apenas inspecoes finalizadas podem ser reabertas")

    updates = {
        "status": "em_andamento",
        "inspector_signature": None,
        "responsible_signature": None,
        "completed_date": None,
        "reopen_justification": justification,
    }
    changes = apply_changes(inspection, updates, list(updates))
    inspection.reopened_at = datetime.utcnow()
    db.commit()

    audit.record_changes(
        changes,
        "inspection",
        inspection.id,
        inspection_id=inspection.id,
        organization_id=inspection.organization_id,
    )
    logger.info("inspecao reaberta inspection_id=%s user_id=%s", inspection.id, context.principal_id)
    return {"success": True, "message": "Inspecao reaberta com sucesso"}


@router.patch("/{inspection_id}/responses/{item_id}")
def save_item_response(
    inspection_id: int,
    item_id: int,
    payload: ResponsePayload,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(INSPECTIONS_EDIT)),
):
    audit = _audit(db, context, request)
    inspection = _load_inspection(db, inspection_id, context, audit)
    item = _load_item(db, inspection, item_id)

    field_type = payload.field_type or item.field_type
    _validate_field_type(field_type)
    compliance_status = classify_response(field_type, payload.response_value, payload.compliance_status)
    responses = {
        "field_type": field_type,
        "response_value": payload.response_value,
        "comment": payload.comment,
    }

    changes: list[FieldChange] = apply_changes(
        item,
        {"field_type": field_type, "field_responses": responses, "compliance_status": compliance_status},
        ["field_type", "field_responses", "compliance_status"],
    )
    db.commit()

    audit.record_changes(
        changes,
        "inspection_item",
        item.id,
        inspection_id=inspection.id,
        organization_id=inspection.organization_id,
    )
    return {
        "item_id": item.id,
        "compliance_status": compliance_status,
        "field_responses": responses,
    }


@router.get("/{inspection_id}/compliance")
def get_compliance(
    inspection_id: int,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(get_tenant_context),
):
    inspection = _load_inspection(db, inspection_id, context, _audit(db, context, request))
    summary = compliance_summary(item.compliance_status for item in inspection.items)
    summary["inspection_id"] = inspection.id
    return summary


@router.get("/{inspection_id}/action-items")
def list_action_items(
    inspection_id: int,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(get_tenant_context),
):
    inspection = _load_inspection(db, inspection_id, context, _audit(db, context, request))
    actions = (
        db.query(models.ActionItem)
        .filter(models.ActionItem.inspection_id == inspection.id)
        .order_by(models.ActionItem.created_at.desc(), models.ActionItem.id.desc())
        .all()
    )
    return {"action_items": [_columns(action) for action in actions]}


@router.post("/{inspection_id}/action-items", status_code=status.HTTP_201_CREATED)
def create_action_item(
    inspection_id: int,
    payload: ActionItemCreate,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(ACTION_ITEMS_CREATE)),
):
    audit = _audit(db, context, request)
    inspection = _load_inspection(db, inspection_id, context, audit)
    if payload.priority is not None and payload.priority not in PRIORITIES:
        raise ValidationError("Prioridade invalida")

    action = action_item_service.build_manual_action(db, inspection, payload.model_dump())
    db.add(action)
    db.flush()
    action_id = action.id
    db.commit()

    audit.record(
        CREATE,
        "action_item",
        action_id,
        inspection_id=inspection.id,
        organization_id=inspection.organization_id,
        new_value={"title": action.title, "priority": action.priority, "status": action.status},
    )
    return {"success": True, "action_item": _columns(action)}


@router.post("/{inspection_id}/items/{item_id}/create-action")
def create_action_from_item(
    inspection_id: int,
    item_id: int,
    payload: CreateActionPayload,
    request: Request,
    db: Session = Depends(get_db),
    context: TenantContext = Depends(require_permission(ACTION_ITEMS_CREATE)),
):
    audit = _audit(db, context, request)
    inspection = _load_inspection(db, inspection_id, context, audit)
    item = _load_item(db, inspection, item_id)

    stored = item.field_responses or {}
    field_type = payload.field_type or item.field_type
    response_value = payload.response_value if payload.response_value is not None else stored.get("response_value")
    compliance_status = classify_response(field_type, response_value, payload.compliance_status)
    if compliance_status is None:
        compliance_status = item.compliance_status
    evidence_count = len(payload.media_data)

    decision = evaluate_escalation(
        compliance_status,
        field_type,
        response_value,
        evidence_count=evidence_count,
        analysis=payload.pre_analysis,
    )
    if not decision.requires_action:
        return {
            "success": True,
            "action": {**decision.as_dict(), "message": "Nao ha evidencias suficientes para criar uma acao."},
            "action_item": None,
        }

    draft, is_ai_generated = action_item_service.draft_action_plan(
        inspection,
        item,
        decision,
        response_value,
        payload.pre_analysis,
        evidence_count,
        use_ai=payload.use_ai,
    )
    action = action_item_service.build_escalated_action(inspection, item, decision, draft, is_ai_generated)
    db.add(action)
    db.flush()
    action_id = action.id
    db.commit()

    audit.record(
        CREATE,
        "action_item",
        action_id,
        inspection_id=inspection.id,
        organization_id=inspection.organization_id,
        new_value={
            "title": action.title,
            "priority": action.priority,
            "when_deadline": action.when_deadline,
            "is_ai_generated": action.is_ai_generated,
        },
    )
    return {"success": True, "action": decision.as_dict(), "action_item": _columns(action)}
