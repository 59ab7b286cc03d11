# survey_engine/services/drafts.py
"""
Construcción de encuestas en borrador: secciones -> preguntas ordenadas.

Toda operación estructural bloquea la fila de la encuesta y verifica que siga
en draft dentro de la misma transacción; así una edición concurrente con la
publicación o se aplica antes (y se publica con ella) o ve la estructura
congelada y falla con ImmutableStructureError.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence
from uuid import UUID

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from survey_engine.core.errors import ImmutableStructureError, InvalidInputError, InvalidOrderError, NotFoundError
from survey_engine.core.timeutils import as_utc
from survey_engine.models.survey import DRAFT, Question, Section, Survey
from survey_engine.models.template import SurveyTemplate
from survey_engine.schemas.surveys import AudienceIn, SurveyCreateIn, SurveyFromTemplateIn, SurveyUpdateIn
from survey_engine.services.audit import audit_log
from survey_engine.services.common import (
    atomic, ensure_question, ensure_section, ensure_survey, renumber,
)
from survey_engine.services.question_types import QuestionTypeRegistry, registry as default_registry

logger = logging.getLogger(__name__)


def _require_draft(survey: Survey) -> None:
    if survey.state != DRAFT:
        raise ImmutableStructureError(
            f"La encuesta está en estado '{survey.state}'; su estructura ya no se puede modificar"
        )


def _apply_audience(survey: Survey, audience: AudienceIn) -> None:
    survey.audience_kind = audience.kind
    survey.audience_department = audience.department.strip() if audience.kind == "department" else None
    survey.audience_ids = (
        [str(m) for m in dict.fromkeys(audience.member_ids)] if audience.kind == "explicit" else None
    )


def _check_order(current_ids: Sequence[UUID], new_order: Sequence[UUID]) -> None:
    if len(new_order) != len(set(new_order)):
        raise InvalidOrderError("El nuevo orden tiene ids repetidos")
    if set(new_order) != set(current_ids):
        raise InvalidOrderError("El nuevo orden debe incluir exactamente todos los elementos hermanos")


class SurveyDraftBuilder:
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

    # -------------------- encuesta -------------------- #

    def _new_survey(self, meta: SurveyCreateIn, title: str, description: Optional[str]) -> Survey:
        survey = Survey(
            title=title,
            description=description,
            is_anonymous=meta.is_anonymous,
            is_mandatory=meta.is_mandatory,
            points_awarded=meta.points_awarded,
            reminder_days=meta.reminder_days,
            open_date=meta.open_date,
            close_date=meta.close_date,
            state=DRAFT,
            created_by=self.actor_id,
        )
        _apply_audience(survey, meta.audience)
        self.db.add(survey)
        self.db.flush()
        return survey

    def create_survey(self, meta: SurveyCreateIn) -> Survey:
        with atomic(self.db):
            survey = self._new_survey(meta, meta.title, meta.description)
            audit_log(self.db, actor_id=self.actor_id, request=self.request, action="survey.create",
                      payload={"survey_id": str(survey.id), "title": survey.title})
        logger.info("Encuesta creada %s (anonymous=%s)", survey.id, survey.is_anonymous)
        return survey

    def create_from_template(self, template_id: UUID, meta: Optional[SurveyFromTemplateIn] = None) -> Survey:
        """
        Encuesta nueva en borrador con las secciones y preguntas de la plantilla.
        Todo o nada: si una pregunta ya no es válida para el registro no se crea nada.
        """
        meta = meta or SurveyFromTemplateIn()
        template = self.db.get(SurveyTemplate, template_id)
        if not template:
            raise NotFoundError("Plantilla no encontrada")

        # se normaliza antes de escribir
        sections = []
        for raw in (template.structure or {}).get("sections", []):
            questions = []
            for q in raw.get("questions", []):
                qtype = self.registry.describe(q.get("type", ""))
                questions.append((qtype.tag, qtype.normalize_config(q.get("config")), q.get("is_required", True), q.get("text", "")))
            sections.append((raw.get("title") or "Sección", raw.get("description"), questions))

        title = meta.title or template.name
        description = meta.description if "description" in meta.model_fields_set else template.description
        with atomic(self.db):
            survey = self._new_survey(meta, title, description)
            for s_pos, (s_title, s_desc, questions) in enumerate(sections):
                section = Section(survey_id=survey.id, title=s_title, description=s_desc, position=s_pos)
                self.db.add(section)
                self.db.flush()
                for q_pos, (tag, config, is_required, text) in enumerate(questions):
                    self.db.add(Question(
                        survey_id=survey.id, section_id=section.id, type=tag, text=text,
                        is_required=is_required, config=config, position=q_pos,
                    ))
            self.db.flush()
            audit_log(self.db, actor_id=self.actor_id, request=self.request, action="survey.create_from_template",
                      payload={"survey_id": str(survey.id), "template_id": str(template.id)})
        logger.info("Encuesta %s creada desde plantilla %s", survey.id, template.id)
        return survey

    def update_survey(self, survey_id: UUID, meta: SurveyUpdateIn) -> Survey:
        with atomic(self.db):
            survey = ensure_survey(self.db, survey_id, lock=True)
            _require_draft(survey)
            changes = meta.model_dump(exclude_unset=True, exclude={"audience"})
            for field, value in changes.items():
                setattr(survey, field, value)
            if meta.audience is not None:
                _apply_audience(survey, meta.audience)
            if survey.open_date and survey.close_date and as_utc(survey.close_date) <= as_utc(survey.open_date):
                raise InvalidInputError("close_date debe ser posterior a open_date")
            audit_log(self.db, actor_id=self.actor_id, request=self.request, action="survey.update",
                      payload={"survey_id": str(survey.id), "fields": sorted(meta.model_fields_set)})
        return survey

    def delete_survey(self, survey_id: UUID) -> None:
        with atomic(self.db):
            survey = ensure_survey(self.db, survey_id, lock=True)
            _require_draft(survey)
            audit_log(self.db, actor_id=self.actor_id, request=self.request, action="survey.delete",
                      payload={"survey_id": str(survey.id), "title": survey.title})
            self.db.delete(survey)
        logger.info("Encuesta en borrador eliminada %s", survey_id)

    def get_survey_tree(self, survey_id: UUID) -> Survey:
        return ensure_survey(self.db, survey_id)

    # -------------------- secciones -------------------- #

    def add_section(self, survey_id: UUID, title: str, description: Optional[str] = None) -> Section:
        with atomic(self.db):
            survey = ensure_survey(self.db, survey_id, lock=True)
            _require_draft(survey)
            n = self.db.scalar(select(func.count(Section.id)).where(Section.survey_id == survey_id)) or 0
            section = Section(survey_id=survey_id, title=title, description=description, position=n)
            self.db.add(section)
        return section

    def remove_section(self, section_id: UUID) -> None:
        with atomic(self.db):
            section = ensure_section(self.db, section_id)
            survey = ensure_survey(self.db, section.survey_id, lock=True)
            _require_draft(survey)
            self.db.delete(section)
            self.db.flush()
            siblings = self.db.scalars(
                select(Section).where(Section.survey_id == survey.id).order_by(Section.position)
            ).all()
            renumber(self.db, siblings)

    def reorder_sections(self, survey_id: UUID, new_order: Sequence[UUID]) -> list[Section]:
        with atomic(self.db):
            survey = ensure_survey(self.db, survey_id, lock=True)
            _require_draft(survey)
            siblings = {
                s.id: s for s in self.db.scalars(select(Section).where(Section.survey_id == survey_id))
            }
            _check_order(list(siblings), new_order)
            ordered = [siblings[i] for i in new_order]
            renumber(self.db, ordered)
        return ordered

    # -------------------- preguntas -------------------- #

    def add_question(
        self,
        section_id: UUID,
        type: str,
        config: Optional[dict] = None,
        is_required: bool = True,
        text: str = "",
    ) -> Question:
        # tipo y config se validan antes de tocar la BD: nada de escrituras parciales
        qtype = self.registry.describe(type)
        normalized = qtype.normalize_config(config)

        with atomic(self.db):
            section = ensure_section(self.db, section_id)
            survey = ensure_survey(self.db, section.survey_id, lock=True)
            _require_draft(survey)
            n = self.db.scalar(select(func.count(Question.id)).where(Question.section_id == section_id)) or 0
            question = Question(
                survey_id=survey.id,
                section_id=section_id,
                type=qtype.tag,
                text=text,
                is_required=is_required,
                config=normalized,
                position=n,
            )
            self.db.add(question)
        return question

    def remove_question(self, question_id: UUID) -> None:
        with atomic(self.db):
            question = ensure_question(self.db, question_id)
            survey = ensure_survey(self.db, question.survey_id, lock=True)
            _require_draft(survey)
            section_id = question.section_id
            self.db.delete(question)
            self.db.flush()
            siblings = self.db.scalars(
                select(Question).where(Question.section_id == section_id).order_by(Question.position)
            ).all()
            renumber(self.db, siblings)

    def reorder_questions(self, section_id: UUID, new_order: Sequence[UUID]) -> list[Question]:
        with atomic(self.db):
            section = ensure_section(self.db, section_id)
            survey = ensure_survey(self.db, section.survey_id, lock=True)
            _require_draft(survey)
            siblings = {
                q.id: q for q in self.db.scalars(select(Question).where(Question.section_id == section_id))
            }
            _check_order(list(siblings), new_order)
            ordered = [siblings[i] for i in new_order]
            renumber(self.db, ordered)
        return ordered
