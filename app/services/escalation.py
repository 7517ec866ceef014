from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from app.services.compliance import NAO_CONFORME, as_boolean, as_rating, normalize_text

BAIXO = "baixo"
MEDIA = "media"
ALTA = "alta"
CRITICA = "critica"

DUE_DAYS_BY_TIER = {
    CRITICA: 7,
    ALTA: 14,
    MEDIA: 30,
    BAIXO: 30,
}

RISK_KEYWORDS = [
    "não conforme",
    "inadequado",
    "risco",
    "perigo",
    "incorreto",
    "falha",
    "violação",
    "infração",
    "necessário",
    "corrigir",
    "ajustar",
    "melhorar",
    "ação",
    "problema",
    "deficiência",
    "insuficiente",
]


@dataclass(frozen=True)
class EscalationDecision:
    requires_action: bool
    risk_tier: str
    due_in_days: int
    reason: str
    rule_id: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "requires_action": self.requires_action,
            "risk_tier": self.risk_tier,
            "due_in_days": self.due_in_days,
            "reason": self.reason,
        }


@dataclass
class Rule:
    id: str
    risk_tier: str
    reason: str
    match: Callable[[], bool]


def found_risk_keywords(analysis: Optional[str]) -> list[str]:
    text = normalize_text(analysis or "")
    if not text:
        return []
    return [keyword for keyword in RISK_KEYWORDS if keyword in text]


def _decision(rule: Rule) -> EscalationDecision:
    return EscalationDecision(
        requires_action=True,
        risk_tier=rule.risk_tier,
        due_in_days=DUE_DAYS_BY_TIER[rule.risk_tier],
        reason=rule.reason,
        rule_id=rule.id,
    )


def evaluate_escalation(
    compliance_status: Optional[str],
    field_type: Optional[str],
    response_value: Any,
    evidence_count: int = 0,
    analysis: Optional[str] = None,
) -> EscalationDecision:
    kind = normalize_text(field_type) if isinstance(field_type, str) else ""
    rating = as_rating(response_value) if kind == "rating" else None
    boolean_answer = as_boolean(response_value) if kind == "boolean" else None
    risks = found_risk_keywords(analysis)
    has_analysis = bool(normalize_text(analysis or ""))

    rules: list[Rule] = [
        Rule(
            id="boolean_non_compliant",
            risk_tier=ALTA,
            reason="Item marcado como nao conforme",
            match=lambda: kind == "boolean" and (boolean_answer is False or compliance_status == NAO_CONFORME),
        ),
        Rule(
            id="rating_critical",
            risk_tier=CRITICA,
            reason="Avaliacao 1/5",
            match=lambda: rating is not None and rating <= 1,
        ),
        Rule(
            id="rating_low",
            risk_tier=ALTA,
            reason="Avaliacao 2/5",
            match=lambda: rating is not None and 1 < rating <= 2,
        ),
        Rule(
            id="classified_non_compliant",
            risk_tier=MEDIA,
            reason="Resposta indica nao conformidade",
            match=lambda: compliance_status == NAO_CONFORME and kind != "boolean",
        ),
        Rule(
            id="analysis_risk_terms",
            risk_tier=MEDIA,
            reason="Analise previa identificou riscos: " + ", ".join(risks[:3]),
            match=lambda: len(risks) >= 2,
        ),
        Rule(
            id="evidence_review",
            risk_tier=MEDIA,
            reason="Analise das evidencias disponiveis",
            match=lambda: evidence_count > 0 or has_analysis,
        ),
    ]

    for rule in rules:
        if rule.match():
            return _decision(rule)

    if response_value in (None, "") and not has_analysis and evidence_count <= 0:
        reason = "Sem resposta, analise ou evidencias para avaliar"
    else:
        reason = "Nenhum sinal de nao conformidade"
    return EscalationDecision(
        requires_action=False,
        risk_tier=BAIXO,
        due_in_days=DUE_DAYS_BY_TIER[BAIXO],
        reason=reason,
    )
