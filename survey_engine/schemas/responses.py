# survey_engine/schemas/responses.py
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from survey_engine.schemas.surveys import SurveyOut


# ---------- Entradas ----------

class AnswerIn(BaseModel):
    question_id: UUID
    value: Any = None


class SectionSubmitIn(BaseModel):
    answers: List[AnswerIn] = Field(default_factory=list)
    # solo encuestas anónimas: lo entrega el servidor en la primera sección
    draft_token: Optional[UUID] = None


# ---------- Salidas ----------

class ValidationErrorOut(BaseModel):
    question_id: Optional[UUID] = None
    code: str
    message: str


class SectionSubmitOut(BaseModel):
    ok: bool
    completed: bool = False
    draft_token: Optional[UUID] = None
    errors: List[ValidationErrorOut] = Field(default_factory=list)


class MySurveyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    survey: SurveyOut
    status: str  # pending | completed


class PendingCountOut(BaseModel):
    count: int


class DraftsOut(BaseModel):
    survey_id: UUID
    sections: dict[str, dict[str, Any]] = Field(default_factory=dict)


class RawResponseOut(BaseModel):
    member_id: UUID
    value: Any
    created_at: Optional[datetime] = None
