# survey_engine/services/templates.py
"""
Plantillas de encuesta: estructura reutilizable (secciones -> preguntas) que
se copia a una encuesta nueva en borrador.

La estructura se valida contra el registro de tipos al guardarse, así una
plantilla rota no llega nunca a instanciarse. Al crear la encuesta la config
se vuelve a normalizar (ver SurveyDraftBuilder.create_from_template).
"""
from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import UUID

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from survey_engine.core.errors import DuplicateNameError, NotFoundError
from survey_engine.models.template import SurveyTemplate
from survey_engine.schemas.surveys import TemplateCreateIn, TemplateStructureIn, TemplateUpdateIn
from survey_engine.services.audit import audit_log
from survey_engine.services.common import atomic
from survey_engine.services.question_types import QuestionTypeRegistry, registry as default_registry

logger = logging.getLogger(__name__)

LIKERT_AGREEMENT = ["Muy en desacuerdo", "En desacuerdo", "Neutral", "De acuerdo", "Muy de acuerdo"]

# plantillas de fábrica (scripts/seed_templates.py)
BUILTIN_TEMPLATES: list[dict[str, Any]] = [
    {
        "name": "Employee Net Promoter Score (eNPS)",
        "description": "Mide la lealtad y satisfacción de los colaboradores",
        "category": "employee",
        "structure": {"sections": [{
            "title": "Satisfacción",
            "description": "Ayúdanos a entender qué tan satisfecho estás trabajando aquí",
            "questions": [
                {"type": "nps", "text": "Del 0 al 10, ¿qué tan probable es que recomiendes la empresa como lugar de trabajo?"},
                {"type": "text", "text": "¿Cuál es la razón principal de tu puntaje?"},
            ],
        }]},
    },
    {
        "name": "Encuesta de compromiso",
        "description": "Mide el compromiso general e identifica áreas de mejora",
        "category": "employee",
        "structure": {"sections": [
            {
                "title": "Ambiente de trabajo",
                "description": "Indica tu grado de acuerdo con cada afirmación",
                "questions": [
                    {"type": "likert", "text": "Tengo los recursos que necesito para hacer bien mi trabajo",
                     "config": {"labels": LIKERT_AGREEMENT}},
                    {"type": "likert", "text": "Siento que se valora el trabajo que hago",
                     "config": {"labels": LIKERT_AGREEMENT}},
                ],
            },
            {
                "title": "Comentarios",
                "questions": [
                    {"type": "text", "text": "¿Qué cambiarías para mejorar tu experiencia?", "is_required": False},
                ],
            },
        ]},
    },
]


class TemplateService:
    def __init__(
        self,
        db: Session,
        registry: Optional[QuestionTypeRegistry] = None,
        actor_id: Optional[UUID] = None,
        request: Optional[Request] = None,
    ):
        self.db = db
        self.registry = registry or default_registry
        self.actor_id = actor_id
        self.request = request

    def normalize_structure(self, structure: TemplateStructureIn) -> dict[str, Any]:
        """Valida tipos y config de cada pregunta; devuelve la estructura normalizada."""
        sections = []
        for sec in structure.sections:
            questions = []
            for q in sec.questions:
                qtype = self.registry.describe(q.type)
                questions.append({
                    "type": qtype.tag,
                    "text": q.text,
                    "is_required": q.is_required,
                    "config": qtype.normalize_config(q.config),
                })
            sections.append({"title": sec.title, "description": sec.description, "questions": questions})
        return {"sections": sections}

    def _ensure_unique_name(self, name: str, exclude: Optional[UUID] = None) -> None:
        stmt = select(SurveyTemplate.id).where(SurveyTemplate.name == name)
        if exclude is not None:
            stmt = stmt.where(SurveyTemplate.id != exclude)
        if self.db.scalar(stmt) is not None:
            raise DuplicateNameError(f"Ya existe una plantilla llamada '{name}'")

    def list_templates(self, category: Optional[str] = None) -> list[SurveyTemplate]:
        stmt = select(SurveyTemplate).order_by(SurveyTemplate.name)
        if category:
            stmt = stmt.where(SurveyTemplate.category == category)
        return list(self.db.scalars(stmt))

    def get_template(self, template_id: UUID) -> SurveyTemplate:
        tpl = self.db.get(SurveyTemplate, template_id)
        if not tpl:
            raise NotFoundError("Plantilla no encontrada")
        return tpl

    def create_template(self, payload: TemplateCreateIn) -> SurveyTemplate:
        structure = self.normalize_structure(payload.structure)
        try:
            with atomic(self.db):
                self._ensure_unique_name(payload.name)
                tpl = SurveyTemplate(
                    name=payload.name,
                    description=payload.description,
                    category=payload.category,
                    structure=structure,
                    created_by=self.actor_id,
                )
                self.db.add(tpl)
                self.db.flush()
                audit_log(self.db, actor_id=self.actor_id, request=self.request, action="template.create",
                          payload={"template_id": str(tpl.id), "name": tpl.name})
        except IntegrityError:
            raise DuplicateNameError(f"Ya existe una plantilla llamada '{payload.name}'")
        logger.info("Plantilla creada %s (%s)", tpl.id, tpl.name)
        return tpl

    def update_template(self, template_id: UUID, payload: TemplateUpdateIn) -> SurveyTemplate:
        structure = self.normalize_structure(payload.structure) if payload.structure is not None else None
        try:
            with atomic(self.db):
                tpl = self.get_template(template_id)
                if payload.name is not None and payload.name != tpl.name:
                    self._ensure_unique_name(payload.name, exclude=tpl.id)
                    tpl.name = payload.name
                for field in ("description", "category"):
                    if field in payload.model_fields_set:
                        setattr(tpl, field, getattr(payload, field))
                if structure is not None:
                    tpl.structure = structure
                self.db.flush()
                audit_log(self.db, actor_id=self.actor_id, request=self.request, action="template.update",
                          payload={"template_id": str(tpl.id), "fields": sorted(payload.model_fields_set)})
        except IntegrityError:
            raise DuplicateNameError(f"Ya existe una plantilla llamada '{payload.name}'")
        return tpl

    def delete_template(self, template_id: UUID) -> None:
        with atomic(self.db):
            tpl = self.get_template(template_id)
            audit_log(self.db, actor_id=self.actor_id, request=self.request, action="template.delete",
                      payload={"template_id": str(tpl.id), "name": tpl.name})
            self.db.delete(tpl)
        logger.info("Plantilla eliminada %s", template_id)


def seed_builtin_templates(db: Session) -> int:
    """Inserta las plantillas de fábrica que falten (por nombre). Devuelve cuántas creó."""
    service = TemplateService(db)
    existing = set(db.scalars(select(SurveyTemplate.name)))
    created = 0
    for raw in BUILTIN_TEMPLATES:
        if raw["name"] in existing:
            continue
        service.create_template(TemplateCreateIn.model_validate(raw))
        created += 1
    return created
