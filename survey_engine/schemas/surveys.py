# survey_engine/schemas/surveys.py
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------- Entradas ----------

class AudienceIn(BaseModel):
    kind: Literal["all", "department", "explicit"] = "all"
    department: Optional[str] = None
    member_ids: List[UUID] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_selector(self):
        if self.kind == "department" and not (self.department or "").strip():
            raise ValueError("department es obligatorio cuando kind='department'")
        if self.kind == "explicit" and not self.member_ids:
            raise ValueError("member_ids no puede ser vacío cuando kind='explicit'")
        return self


class SurveyCreateIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    is_anonymous: bool = False
    is_mandatory: bool = False
    audience: AudienceIn = Field(default_factory=AudienceIn)
    points_awarded: int = Field(default=0, ge=0)
    reminder_days: int = Field(default=0, ge=0, le=30)
    open_date: Optional[datetime] = None
    close_date: Optional[datetime] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.open_date and self.close_date and self.close_date <= self.open_date:
            raise ValueError("close_date debe ser posterior a open_date")
        return self


class SurveyUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    is_anonymous: Optional[bool] = None
    is_mandatory: Optional[bool] = None
    audience: Optional[AudienceIn] = None
    points_awarded: Optional[int] = Field(default=None, ge=0)
    reminder_days: Optional[int] = Field(default=None, ge=0, le=30)
    open_date: Optional[datetime] = None
    close_date: Optional[datetime] = None


class SectionCreateIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None


class QuestionCreateIn(BaseModel):
    type: str = Field(min_length=1, max_length=30)
    text: str = ""
    is_required: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class ReorderIn(BaseModel):
    ids: List[UUID] = Field(min_length=1)


# ---------- Salidas ----------

class QuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    section_id: UUID
    type: str
    text: str
    is_required: bool
    config: dict[str, Any]
    position: int


class SectionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    survey_id: UUID
    title: str
    description: Optional[str] = None
    position: int
    questions: List[QuestionOut] = Field(default_factory=list)


class SurveyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: Optional[str] = None
    is_anonymous: bool
    is_mandatory: bool
    audience_kind: str
    audience_department: Optional[str] = None
    points_awarded: int
    reminder_days: int
    open_date: Optional[datetime] = None
    close_date: Optional[datetime] = None
    state: str
    total_recipients: int
    published_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class SurveyTreeOut(SurveyOut):
    sections: List[SectionOut] = Field(default_factory=list)


class PublishOut(BaseModel):
    survey_id: UUID
    state: str
    total_recipients: int


class QuestionTypeOut(BaseModel):
    type: str
    family: str


# ---------- Plantillas ----------

class TemplateQuestionIn(BaseModel):
    type: str = Field(min_length=1, max_length=30)
    text: str = ""
    is_required: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class TemplateSectionIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    questions: List[TemplateQuestionIn] = Field(default_factory=list)


class TemplateStructureIn(BaseModel):
    sections: List[TemplateSectionIn] = Field(min_length=1)


class TemplateCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Optional[str] = Field(default=None, max_length=50)
    structure: TemplateStructureIn


class TemplateUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Optional[str] = Field(default=None, max_length=50)
    structure: Optional[TemplateStructureIn] = None


class TemplateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    structure: dict[str, Any]
    created_at: Optional[datetime] = None


class SurveyFromTemplateIn(SurveyCreateIn):
    """Metadatos de la encuesta nueva; título y descripción salen de la plantilla si faltan."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
