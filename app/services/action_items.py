import logging
from datetime import date, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.errors import CollaboratorUnavailable
from app.db import models
from app.services import ai_client
from app.services.escalation import EscalationDecision

logger = logging.getLogger("compia")

DEFAULT_TITLE = "Ação Corretiva"
DEFAULT_RESPONSIBLE = "A definir"
DEFAULT_COST = "A orçar"
DEFAULT_DEADLINE_DAYS = 30


def resolve_item_id(
    db: Session,
    inspection_id: int,
    item_id: Optional[int],
    field_name: Optional[str] = None,
) -> Optional[int]:
    if item_id is not None:
        exists = (
            db.query(models.InspectionItem.id)
            .filter(models.InspectionItem.id == item_id, models.InspectionItem.inspection_id == inspection_id)
            .first()
        )
        if exists:
            return item_id
    if field_name:
        by_name = (
            db.query(models.InspectionItem.id)
            .filter(
                models.InspectionItem.inspection_id == inspection_id,
                models.InspectionItem.item_description == field_name,
            )
            .first()
        )
        if by_name:
            return by_name[0]
    return None


def build_manual_action(
    db: Session,
    inspection: models.Inspection,
    data: dict[str, Any],
) -> models.ActionItem:
    item_id = resolve_item_id(db, inspection.id, data.get("inspection_item_id"), data.get("field_name"))
    return models.ActionItem(
        inspection_id=inspection.id,
        inspection_item_id=item_id,
        title=data.get("title") or DEFAULT_TITLE,
        what_description=data.get("what_description") or "",
        why_reason=data.get("why_reason") or "",
        where_location=data.get("where_location") or inspection.location or "",
        when_deadline=data.get("when_deadline") or date.today() + timedelta(days=DEFAULT_DEADLINE_DAYS),
        who_responsible=data.get("who_responsible") or DEFAULT_RESPONSIBLE,
        how_method=data.get("how_method") or "",
        how_much_cost=data.get("how_much_cost") or DEFAULT_COST,
        priority=data.get("priority") or "media",
        status=data.get("status") or "pending",
        is_ai_generated=False,
    )


def rule_based_draft(
    inspection: models.Inspection,
    item: models.InspectionItem,
    decision: EscalationDecision,
) -> ai_client.ActionPlanDraft:
    return ai_client.ActionPlanDraft(
        title=item.item_description,
        what_description=f"Corrigir nao conformidade: {item.item_description}",
        why_reason=decision.reason,
        where_location=inspection.location or "",
        who_responsible=DEFAULT_RESPONSIBLE,
        how_method="Avaliar o item no local e executar a correcao necessaria",
        how_much_cost=DEFAULT_COST,
    )


def draft_action_plan(
    inspection: models.Inspection,
    item: models.InspectionItem,
    decision: EscalationDecision,
    response_value: Any,
    analysis: Optional[str],
    evidence_count: int,
    use_ai: bool = True,
) -> tuple[ai_client.ActionPlanDraft, bool]:
    """Rascunho 5W2H pela IA; sem IA disponivel cai no rascunho por regras."""
    if use_ai:
        item_context = {
            "inspection_title": inspection.title,
            "location": inspection.location,
            "company_name": inspection.company_name,
            "category": item.category,
            "item_description": item.item_description,
            "field_type": item.field_type,
            "response_value": response_value,
            "compliance_status": item.compliance_status,
            "risk_tier": decision.risk_tier,
            "reason": decision.reason,
            "pre_analysis": analysis,
            "evidence_count": evidence_count,
        }
        try:
            return ai_client.request_action_plan(item_context), True
        except CollaboratorUnavailable as exc:
            logger.warning("IA indisponivel, usando rascunho por regras item_id=%s erro=%s", item.id, exc.message)
    return rule_based_draft(inspection, item, decision), False


def build_escalated_action(
    inspection: models.Inspection,
    item: models.InspectionItem,
    decision: EscalationDecision,
    draft: ai_client.ActionPlanDraft,
    is_ai_generated: bool,
) -> models.ActionItem:
    # Prioridade e prazo vem sempre da politica, nunca do rascunho.
    return models.ActionItem(
        inspection_id=inspection.id,
        inspection_item_id=item.id,
        title=draft.title or item.item_description or DEFAULT_TITLE,
        what_description=draft.what_description or "",
        why_reason=draft.why_reason or decision.reason,
        where_location=draft.where_location or inspection.location or "",
        when_deadline=date.today() + timedelta(days=decision.due_in_days),
        who_responsible=draft.who_responsible or DEFAULT_RESPONSIBLE,
        how_method=draft.how_method or "",
        how_much_cost=draft.how_much_cost or DEFAULT_COST,
        priority=decision.risk_tier,
        status="pending",
        is_ai_generated=is_ai_generated,
    )
