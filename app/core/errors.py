from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class CompiaError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    error: str = "erro"
    default_message: str = "Erro ao processar requisicao"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def extra(self) -> dict[str, Any]:
        return {}

    def headers(self) -> Optional[dict[str, str]]:
        return None


class Unauthenticated(CompiaError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "unauthenticated"
    default_message = "Autenticacao necessaria"

    def headers(self) -> Optional[dict[str, str]]:
        return {"WWW-Authenticate": "Bearer"}


class Unauthorized(CompiaError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "forbidden"
    default_message = "Permissao negada"


class ImmutableFieldViolation(CompiaError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "immutable_field"
    default_message = "Operacao nao permitida"

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"O campo {field} nao pode ser alterado")
        self.field = field

    def extra(self) -> dict[str, Any]:
        return {"field": self.field}


class ReferentialBlock(CompiaError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "referential_block"

    HAS_USERS = "has_users"
    HAS_SUBSIDIARIES = "has_subsidiaries"
    HAS_INSPECTIONS = "has_inspections"

    _MESSAGES = {
        HAS_USERS: "Nao e possivel excluir a organizacao. Ela possui {count} usuario(s) ativo(s).",
        HAS_SUBSIDIARIES: "Nao e possivel excluir a organizacao. Ela possui {count} subsidiaria(s) ativa(s).",
        HAS_INSPECTIONS: "Nao e possivel excluir a organizacao. Ela possui {count} inspecao(oes) associada(s).",
    }

    def __init__(self, reason: str, count: int):
        template = self._MESSAGES.get(reason, "Exclusao bloqueada ({count})")
        super().__init__(template.format(count=count))
        self.error = reason
        self.reason = reason
        self.count = count

    def extra(self) -> dict[str, Any]:
        return {"reason": self.reason, "count": self.count}


class ValidationError(CompiaError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error = "validation_error"
    default_message = "Dados invalidos"


class NotFound(CompiaError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "not_found"
    default_message = "Registro nao encontrado"


class CollaboratorUnavailable(CompiaError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "collaborator_unavailable"
    default_message = "Servico de IA indisponivel"


def compia_error_handler(request: Request, exc: CompiaError) -> JSONResponse:
    body = {"error": exc.error, "message": exc.message}
    body.update(exc.extra())
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers())
