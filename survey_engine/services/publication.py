# survey_engine/services/publication.py
"""
Ciclo de vida de la encuesta: draft -> active -> completed -> archived.

Cada transición es un UPDATE condicional sobre el estado esperado dentro de la
transacción que bloqueó la fila, de modo que dos transiciones concurrentes no
pueden aplicarse ambas. Ninguna transición toca secciones ni preguntas.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import Request
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from survey_engine.core.errors import EmptySurveyError, InvalidInputError, InvalidStateError
from survey_engine.core.timeutils import as_utc, utcnow
from survey_engine.models.recipient import PENDING, Recipient
from survey_engine.models.survey import ACTIVE, ARCHIVED, COMPLETED, DRAFT, Question, Survey
from survey_engine.services.audience import AudienceResolver, AudienceSelector
from survey_engine.services.audit import audit_log
from survey_engine.services.common import atomic, ensure_survey

logger = logging.getLogger(__name__)


def is_past_due(survey: Survey, now: Optional[datetime] = None) -> bool:
    """Para el scheduler externo: activa y con close_date vencida."""
    now = now or utcnow()
    return survey.state == ACTIVE and survey.close_date is not None and as_utc(survey.close_date) <= now


def is_open(survey: Survey, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    if survey.state != ACTIVE:
        return False
    if survey.open_date is not None and as_utc(survey.open_date) > now:
        return False
    return not is_past_due(survey, now)


class PublicationController:
    def __init__(self, db: Session, actor_id: Optional[UUID] = None, request: Optional[Request] = None):
        self.db = db
        self.actor_id = actor_id
        self.request = request

    def _transition(self, survey_id: UUID, expected: str, target: str, **values) -> int:
        res = self.db.execute(
            update(Survey)
            .where(Survey.id == survey_id, Survey.state == expected)
            .values(state=target, **values)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    def publish(self, survey_id: UUID, resolver: AudienceResolver, now: Optional[datetime] = None) -> Survey:
        now = now or utcnow()
        with atomic(self.db):
            survey = ensure_survey(self.db, survey_id, lock=True)
            if survey.state != DRAFT:
                raise InvalidStateError(f"Solo se publican encuestas en borrador (estado actual: {survey.state})")

            n_questions = self.db.scalar(
                select(func.count(Question.id)).where(Question.survey_id == survey_id)
            ) or 0
            if n_questions == 0:
                raise EmptySurveyError("La encuesta debe tener al menos una pregunta para publicarse")

            # snapshot de la audiencia: cambios posteriores en el directorio no aplican
            selector = AudienceSelector.from_survey(survey)
            members = sorted(resolver.resolve(selector), key=str)
            if not members:
                raise InvalidInputError("La audiencia seleccionada no tiene miembros activos")

            for member_id in members:
                self.db.add(Recipient(survey_id=survey_id, member_id=member_id, status=PENDING))
            self.db.flush()

            if self._transition(survey_id, DRAFT, ACTIVE, published_at=now, total_recipients=len(members)) != 1:
                raise InvalidStateError("La encuesta cambió de estado durante la publicación")

            audit_log(self.db, actor_id=self.actor_id, request=self.request, action="survey.publish",
                      payload={"survey_id": str(survey_id), "recipients": len(members), "questions": n_questions})

        self.db.refresh(survey)
        logger.info("Encuesta %s publicada: %d destinatarios, %d preguntas", survey_id, len(members), n_questions)
        return survey

    def complete(self, survey_id: UUID, now: Optional[datetime] = None) -> Survey:
        now = now or utcnow()
        with atomic(self.db):
            survey = ensure_survey(self.db, survey_id, lock=True)
            if survey.state == COMPLETED:
                return survey  # idempotente
            if survey.state != ACTIVE:
                raise InvalidStateError(f"Solo se cierran encuestas activas (estado actual: {survey.state})")
            if self._transition(survey_id, ACTIVE, COMPLETED, completed_at=now) != 1:
                self.db.refresh(survey)
                if survey.state != COMPLETED:
                    raise InvalidStateError("La encuesta cambió de estado durante el cierre")
            else:
                audit_log(self.db, actor_id=self.actor_id, request=self.request, action="survey.complete",
                          payload={"survey_id": str(survey_id)})
        self.db.refresh(survey)
        logger.info("Encuesta %s cerrada", survey_id)
        return survey

    def archive(self, survey_id: UUID, now: Optional[datetime] = None) -> Survey:
        now = now or utcnow()
        with atomic(self.db):
            survey = ensure_survey(self.db, survey_id, lock=True)
            if survey.state != COMPLETED:
                raise InvalidStateError(f"Solo se archivan encuestas cerradas (estado actual: {survey.state})")
            if self._transition(survey_id, COMPLETED, ARCHIVED, archived_at=now) != 1:
                raise InvalidStateError("La encuesta cambió de estado durante el archivado")
            audit_log(self.db, actor_id=self.actor_id, request=self.request, action="survey.archive",
                      payload={"survey_id": str(survey_id)})
        self.db.refresh(survey)
        logger.info("Encuesta %s archivada", survey_id)
        return survey
