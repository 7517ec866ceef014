import json
import logging
import time
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.errors import CollaboratorUnavailable

logger = logging.getLogger("compia.ai")

CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"

SYSTEM_PROMPT = (
    "Voce e um engenheiro de seguranca do trabalho. Responda apenas com um objeto JSON "
    "contendo as chaves title, what_description, why_reason, where_location, "
    "who_responsible, how_method e how_much_cost."
)


class ActionPlanDraft(BaseModel):
    title: Optional[str] = None
    what_description: Optional[str] = None
    why_reason: Optional[str] = None
    where_location: Optional[str] = None
    who_responsible: Optional[str] = None
    how_method: Optional[str] = None
    how_much_cost: Optional[str] = None


def _get_api_key() -> str:
    if not settings.OPENAI_API_KEY:
        raise CollaboratorUnavailable("OPENAI_API_KEY nao configurada")
    return settings.OPENAI_API_KEY


def _extract_json_candidate(raw_text: str) -> str:
    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise ValueError("JSON nao encontrado no texto")
    return raw_text[start : end + 1]


def _extract_error_message(res: httpx.Response) -> str:
    try:
        payload = res.json()
    except ValueError:
        return res.text
    if isinstance(payload, dict):
        err = payload.get("error") or {}
        if isinstance(err, dict) and err.get("message"):
            return err["message"]
        return payload.get("message") or res.text
    return res.text


def _extract_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise CollaboratorUnavailable("Resposta da IA em formato inesperado")
    choices = payload.get("choices") or []
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str) and content.strip():
            return content
        if isinstance(content, list):
            for part in content:
                text = part.get("text") if isinstance(part, dict) else None
                if isinstance(text, str) and text.strip():
                    return text
    raise CollaboratorUnavailable("Resposta da IA sem texto")


def _request_with_retry(
    client: httpx.Client,
    url: str,
    body: dict,
    max_attempts: int = 2,
) -> dict:
    last_error = "Falha na chamada da IA"
    for attempt in range(max_attempts):
        try:
            res = client.post(url, json=body)
        except httpx.HTTPError as exc:
            last_error = f"{type(exc).__name__}: {exc}"
        else:
            if res.status_code < 400:
                try:
                    return res.json()
                except ValueError:
                    last_error = "Resposta da IA nao e JSON"
            else:
                last_error = f"IA erro HTTP {res.status_code}: {_extract_error_message(res)}"
                if res.status_code < 500 and res.status_code != 429:
                    break
        logger.warning("chamada a IA falhou tentativa=%s erro=%s", attempt + 1, last_error)
        if attempt + 1 < max_attempts:
            time.sleep(0.4)
    raise CollaboratorUnavailable(last_error)


def _parse_draft(raw_text: str) -> ActionPlanDraft:
    try:
        return ActionPlanDraft.model_validate_json(raw_text)
    except PydanticValidationError:
        pass
    try:
        data = json.loads(_extract_json_candidate(raw_text))
        return ActionPlanDraft.model_validate(data)
    except (ValueError, PydanticValidationError) as exc:
        raise CollaboratorUnavailable(f"Resposta da IA invalida: {exc}")


def request_action_plan(item_context: dict[str, Any], timeout: Optional[float] = None) -> ActionPlanDraft:
    """Pede um rascunho 5W2H. Qualquer falha vira CollaboratorUnavailable."""
    headers = {"Authorization": f"Bearer {_get_api_key()}"}
    body = {
        "model": settings.OPENAI_MODEL,
        "temperature": 0.2,
        "response_format": {"type": "json_object"},
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps(item_context, ensure_ascii=False, default=str)},
        ],
    }
    started = time.perf_counter()
    with httpx.Client(headers=headers, timeout=timeout or settings.AI_TIMEOUT_SECONDS) as client:
        payload = _request_with_retry(client, CHAT_COMPLETIONS_URL, body)
    logger.info("plano de acao gerado pela IA duration_ms=%.2f", (time.perf_counter() - started) * 1000)
    return _parse_draft(_extract_text(payload))
