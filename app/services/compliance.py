from __future__ import annotations

import math
import re
from typing import Any, Iterable, Optional

CONFORME = "conforme"
NAO_CONFORME = "nao_conforme"
NAO_APLICAVEL = "nao_aplicavel"
PARCIALMENTE_CONFORME = "parcialmente_conforme"

COMPLIANCE_STATES = [CONFORME, NAO_CONFORME, NAO_APLICAVEL, PARCIALMENTE_CONFORME]

FIELD_TYPES = [
    "boolean",
    "select",
    "radio",
    "multiselect",
    "rating",
    "text",
    "textarea",
    "number",
    "date",
    "time",
    "file",
]

TEXTUAL_FIELD_TYPES = {"select", "radio", "multiselect", "text", "textarea"}

UNANSWERED_MARKERS = {"", "unanswered", "pendente", "nao_respondido"}

# Rotulos legados do frontend.
STATUS_ALIASES = {
    "compliant": CONFORME,
    "non_compliant": NAO_CONFORME,
    "not_applicable": NAO_APLICAVEL,
    "partially_compliant": PARCIALMENTE_CONFORME,
}

# Ordem importa: "nao conforme" contem "conforme".
LEXICON: list[tuple[str, list[str]]] = [
    (
        NAO_CONFORME,
        [
            "não conforme",
            "nao conforme",
            "não-conforme",
            "nao-conforme",
            "não_conforme",
            "nao_conforme",
            "non-conforme",
            "inadequado",
        ],
    ),
    (NAO_APLICAVEL, ["não aplicável", "nao aplicavel", "não se aplica", "nao se aplica", "n/a", "n-a"]),
    (CONFORME, ["conforme"]),
]

# "conforme" acompanhado de negacao nunca conta como conforme.
NEGATION = re.compile(r"\bn[aã]o\b")


def normalize_text(text: str) -> str:
    return (text or "").strip().lower()


def normalize_status(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    key = normalize_text(value)
    if key in UNANSWERED_MARKERS:
        return None
    key = STATUS_ALIASES.get(key, key)
    return key if key in COMPLIANCE_STATES else None


def as_rating(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
    elif not isinstance(value, (int, float)):
        return None
    try:
        rating = float(value)
    except (ValueError, OverflowError):
        return None
    return rating if math.isfinite(rating) else None


def as_boolean(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        key = normalize_text(value)
        if key in {"true", "sim"}:
            return True
        if key in {"false", "nao", "não"}:
            return False
    return None


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return normalize_text(value)
    if isinstance(value, (list, tuple)):
        return " ".join(normalize_text(part) for part in value if isinstance(part, str))
    return ""


def match_lexicon(text: str) -> Optional[str]:
    if not text:
        return None
    for status, terms in LEXICON:
        if not any(term in text for term in terms):
            continue
        if status == CONFORME and NEGATION.search(text):
            return None
        return status
    return None


def classify_rating(rating: float) -> str:
    if rating >= 4:
        return CONFORME
    if rating <= 2:
        return NAO_CONFORME
    return PARCIALMENTE_CONFORME


def classify_response(
    field_type: Optional[str],
    response_value: Any,
    explicit_status: Any = None,
) -> Optional[str]:
    """
    Classifica a resposta de um item de inspecao.
    Nunca levanta excecao e nunca assume conformidade quando nao ha sinal.
    """
    manual = normalize_status(explicit_status)
    if manual is not None:
        return manual

    kind = normalize_text(field_type) if isinstance(field_type, str) else ""

    if kind == "boolean":
        answer = as_boolean(response_value)
        if answer is None:
            return None
        return CONFORME if answer else NAO_CONFORME

    if kind == "rating":
        rating = as_rating(response_value)
        if rating is None:
            return None
        return classify_rating(rating)

    if kind in TEXTUAL_FIELD_TYPES:
        return match_lexicon(_as_text(response_value))

    return None


def compliance_summary(statuses: Iterable[Optional[str]]) -> dict:
    counts = {status: 0 for status in COMPLIANCE_STATES}
    counts["nao_respondido"] = 0
    for status in statuses:
        if status in counts and status is not None:
            counts[status] += 1
        else:
            counts["nao_respondido"] += 1

    total = sum(counts.values())
    applicable = total - counts[NAO_APLICAVEL]
    percentage = round(100 * counts[CONFORME] / applicable) if applicable else 0
    return {
        "total_items": total,
        "applicable_items": applicable,
        "counts": counts,
        "compliance_percentage": percentage,
    }
