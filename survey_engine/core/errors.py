# survey_engine/core/errors.py
"""
Errores de dominio del motor de encuestas.

Todos son recuperables por el llamador (corregir la entrada o esperar otro
estado). Los endpoints no los capturan: un handler en main.py los traduce a
JSON ``{"code", "detail"}`` con el status HTTP de cada clase.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID


class SurveyEngineError(Exception):
    status_code = 400
    code = "survey_engine_error"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class NotFoundError(SurveyEngineError):
    status_code = 404
    code = "not_found"


class InvalidStateError(SurveyEngineError):
    status_code = 409
    code = "invalid_state"


class ImmutableStructureError(InvalidStateError):
    code = "immutable_structure"


class EmptySurveyError(SurveyEngineError):
    status_code = 409
    code = "empty_survey"


class AlreadyCompletedError(SurveyEngineError):
    status_code = 409
    code = "already_completed"


class InvalidInputError(SurveyEngineError):
    code = "invalid_input"


class UnknownQuestionTypeError(InvalidInputError):
    code = "unknown_question_type"


class InvalidQuestionConfigError(InvalidInputError):
    code = "invalid_question_config"


class InvalidOrderError(InvalidInputError):
    code = "invalid_order"


class DuplicateNameError(InvalidInputError):
    code = "duplicate_name"


@dataclass(frozen=True)
class ValidationError:
    """Falla de una respuesta concreta. Se devuelven siempre en lote."""

    question_id: Optional[UUID]
    code: str
    message: str
    extra: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "question_id": str(self.question_id) if self.question_id else None,
            "code": self.code,
            "message": self.message,
            **({"extra": self.extra} if self.extra else {}),
        }
