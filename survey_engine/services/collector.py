# survey_engine/services/collector.py
"""
Recepción de respuestas, sección por sección.

- Las secciones previas a la última se guardan como borradores (reanudables).
- La última sección valida el conjunto completo y, en una sola transacción,
  marca al destinatario como completado, escribe las Response y emite el hecho
  "survey completed" para el ledger de puntos.
- Encuestas anónimas: la identidad solo se usa para verificar que la persona
  está en el snapshot y que no envió antes (recibo HMAC). Las Response se
  escriben sin recipient_id ni timestamp y los borradores se indexan con un
  token aleatorio, nunca con la identidad.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from survey_engine.core.config import settings
from survey_engine.core.errors import (
    AlreadyCompletedError, InvalidStateError, NotFoundError, ValidationError,
)
from survey_engine.core.timeutils import as_utc, utcnow
from survey_engine.models.recipient import (
    COMPLETED, PENDING, AnonymousReceipt, CompletionEvent, Recipient,
)
from survey_engine.models.response import Response, ResponseDraft
from survey_engine.models.survey import ACTIVE, COMPLETED as SURVEY_COMPLETED, Question, Section, Survey
from survey_engine.services.common import atomic, ensure_section, ensure_survey
from survey_engine.services.publication import is_past_due
from survey_engine.services.question_types import QuestionTypeRegistry, registry as default_registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Answer:
    question_id: UUID
    value: Any = None


@dataclass
class SectionResult:
    errors: list[ValidationError] = field(default_factory=list)
    completed: bool = False
    draft_token: Optional[UUID] = None

    @property
    def ok(self) -> bool:
        return not self.errors


def receipt_digest(survey_id: UUID, member_id: UUID, secret: Optional[str] = None) -> str:
    key = (secret or settings.ANONYMITY_SECRET).encode("utf-8")
    return hmac.new(key, f"{survey_id}:{member_id}".encode("utf-8"), hashlib.sha256).hexdigest()


class ResponseCollector:
    def __init__(self, db: Session, registry: Optional[QuestionTypeRegistry] = None, secret: Optional[str] = None):
        self.db = db
        self.registry = registry or default_registry
        self.secret = secret

    # -------------------- helpers -------------------- #

    def _ensure_accepting(self, survey: Survey, now: datetime) -> None:
        if survey.state != ACTIVE:
            raise InvalidStateError(f"La encuesta no acepta respuestas (estado: {survey.state})")
        if survey.open_date is not None and as_utc(survey.open_date) > now:
            raise InvalidStateError("La encuesta aún no está abierta")
        if is_past_due(survey, now):
            raise InvalidStateError("La encuesta ya venció")

    def _recipient(self, survey_id: UUID, member_id: UUID) -> Recipient:
        rec = self.db.scalar(
            select(Recipient).where(Recipient.survey_id == survey_id, Recipient.member_id == member_id)
        )
        if not rec:
            raise NotFoundError("No es destinatario de esta encuesta")
        return rec

    def _digest(self, survey_id: UUID, member_id: UUID) -> str:
        return receipt_digest(survey_id, member_id, self.secret)

    def _has_receipt(self, survey_id: UUID, member_id: UUID) -> bool:
        digest = self._digest(survey_id, member_id)
        return self.db.scalar(
            select(AnonymousReceipt.id).where(
                AnonymousReceipt.survey_id == survey_id, AnonymousReceipt.digest == digest
            )
        ) is not None

    def _survey_questions(self, survey_id: UUID) -> list[Question]:
        return list(
            self.db.scalars(
                select(Question)
                .join(Section, Section.id == Question.section_id)
                .where(Question.survey_id == survey_id)
                .order_by(Section.position, Question.position)
            )
        )

    def validate_answers(self, questions: list[Question], answers: Iterable[Answer]) -> tuple[dict[UUID, Any], list[ValidationError]]:
        """
        Valida todas las respuestas de una sección y junta TODOS los errores
        (no se corta en el primero). Devuelve (respuestas limpias, errores).
        """
        by_id = {q.id: q for q in questions}
        provided: dict[UUID, Any] = {}
        errors: list[ValidationError] = []

        for a in answers:
            if a.question_id not in by_id:
                errors.append(ValidationError(a.question_id, "unknown_question", "La pregunta no pertenece a esta sección"))
                continue
            if a.question_id in provided:
                errors.append(ValidationError(a.question_id, "duplicate_answer", "Respuesta repetida para la misma pregunta"))
                continue
            provided[a.question_id] = a.value

        clean: dict[UUID, Any] = {}
        for q in questions:
            qtype = self.registry.describe(q.type)
            value = provided.get(q.id)
            err = qtype.validate(q, value, q.is_required)
            if err:
                errors.append(err)
            elif not qtype.is_missing(value):
                clean[q.id] = value
        return clean, errors

    # -------------------- borradores -------------------- #

    def _save_draft(self, survey_id: UUID, section_id: UUID, owner_key: str, clean: dict[UUID, Any]) -> None:
        payload = {str(k): v for k, v in clean.items()}
        with atomic(self.db):
            draft = self.db.scalar(
                select(ResponseDraft).where(
                    ResponseDraft.survey_id == survey_id,
                    ResponseDraft.section_id == section_id,
                    ResponseDraft.owner_key == owner_key,
                )
            )
            if draft:
                draft.answers = payload
            else:
                self.db.add(ResponseDraft(survey_id=survey_id, section_id=section_id, owner_key=owner_key, answers=payload))

    def _load_drafts(self, survey_id: UUID, owner_key: Optional[str]) -> dict[UUID, dict[UUID, Any]]:
        if owner_key is None:
            return {}
        rows = self.db.scalars(
            select(ResponseDraft).where(ResponseDraft.survey_id == survey_id, ResponseDraft.owner_key == owner_key)
        ).all()
        return {r.section_id: {UUID(k): v for k, v in (r.answers or {}).items()} for r in rows}

    def load_drafts(self, survey_id: UUID, member_id: Optional[UUID] = None, draft_token: Optional[UUID] = None) -> dict[UUID, dict[UUID, Any]]:
        """Progreso guardado: por destinatario (nominal) o por token (anónima)."""
        survey = ensure_survey(self.db, survey_id)
        if survey.is_anonymous:
            return self._load_drafts(survey_id, f"token:{draft_token}" if draft_token else None)
        if member_id is None:
            raise NotFoundError("No es destinatario de esta encuesta")
        rec = self._recipient(survey_id, member_id)
        return self._load_drafts(survey_id, f"recipient:{rec.id}")

    # -------------------- envío -------------------- #

    def submit_section(
        self,
        survey_id: UUID,
        member_id: Optional[UUID],
        section_id: UUID,
        answers: Iterable[Answer],
        draft_token: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> SectionResult:
        now = now or utcnow()
        survey = ensure_survey(self.db, survey_id)
        self._ensure_accepting(survey, now)

        section = ensure_section(self.db, section_id)
        if section.survey_id != survey.id:
            raise NotFoundError("Sección no encontrada en esta encuesta")
        if member_id is None:
            raise NotFoundError("No es destinatario de esta encuesta")

        recipient: Optional[Recipient] = None
        if survey.is_anonymous:
            # la identidad se usa solo para estas dos verificaciones
            self._recipient(survey.id, member_id)
            if self._has_receipt(survey.id, member_id):
                raise AlreadyCompletedError("Ya respondió esta encuesta")
            owner_key = f"token:{draft_token}" if draft_token else None
        else:
            recipient = self._recipient(survey.id, member_id)
            if recipient.status != PENDING:
                raise AlreadyCompletedError("Ya respondió esta encuesta")
            owner_key = f"recipient:{recipient.id}"

        section_questions = [q for q in self._survey_questions(survey.id) if q.section_id == section.id]
        clean, errors = self.validate_answers(section_questions, answers)
        if errors:
            return SectionResult(errors=errors, draft_token=draft_token)

        last_section_id = self.db.scalar(
            select(Section.id).where(Section.survey_id == survey.id).order_by(Section.position.desc()).limit(1)
        )
        if section.id != last_section_id:
            if survey.is_anonymous and owner_key is None:
                draft_token = uuid.uuid4()
                owner_key = f"token:{draft_token}"
            self._save_draft(survey.id, section.id, owner_key, clean)
            return SectionResult(completed=False, draft_token=draft_token)

        # ---- sección final: juntar borradores y verificar obligatorias de todo el cuestionario
        merged: dict[UUID, Any] = {}
        for sec_id, sec_answers in self._load_drafts(survey.id, owner_key).items():
            if sec_id != section.id:
                merged.update(sec_answers)
        merged.update(clean)

        all_questions = self._survey_questions(survey.id)
        missing = [
            ValidationError(q.id, "required", "Respuesta obligatoria en una sección anterior")
            for q in all_questions
            if q.is_required and q.section_id != section.id and q.id not in merged
        ]
        if missing:
            return SectionResult(errors=missing, draft_token=draft_token)

        ordered = [(q.id, merged[q.id]) for q in all_questions if q.id in merged]
        if survey.is_anonymous:
            self._finalize_anonymous(survey, member_id, ordered, owner_key, now)
        else:
            self._finalize_named(survey, recipient, ordered, owner_key, now)
        return SectionResult(completed=True)

    def _finalize_named(self, survey: Survey, recipient: Recipient, ordered: list[tuple[UUID, Any]], owner_key: str, now: datetime) -> None:
        try:
            with atomic(self.db):
                # FOR SHARE: varios envíos a la vez, pero no contra complete/archive
                self._ensure_accepting(ensure_survey(self.db, survey.id, lock=True, read=True), now)
                # check-and-set: solo un envío concurrente gana
                res = self.db.execute(
                    update(Recipient)
                    .where(Recipient.id == recipient.id, Recipient.status == PENDING)
                    .values(status=COMPLETED, completed_at=now)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    raise AlreadyCompletedError("Ya respondió esta encuesta")
                for qid, value in ordered:
                    self.db.add(Response(
                        survey_id=survey.id, question_id=qid, recipient_id=recipient.id,
                        value=value, created_at=now,
                    ))
                self.db.execute(delete(ResponseDraft).where(
                    ResponseDraft.survey_id == survey.id, ResponseDraft.owner_key == owner_key
                ))
                if survey.points_awarded > 0:
                    self.db.add(CompletionEvent(
                        survey_id=survey.id, member_id=recipient.member_id,
                        points=survey.points_awarded, created_at=now,
                    ))
                self.db.flush()
        except IntegrityError:
            raise AlreadyCompletedError("Ya respondió esta encuesta")
        logger.info("Encuesta %s completada por destinatario %s (%d respuestas)", survey.id, recipient.id, len(ordered))

    def _finalize_anonymous(self, survey: Survey, member_id: UUID, ordered: list[tuple[UUID, Any]], owner_key: Optional[str], now: datetime) -> None:
        try:
            with atomic(self.db):
                # exclusivo: la fila se actualiza igual (contador anónimo)
                self._ensure_accepting(ensure_survey(self.db, survey.id, lock=True), now)
                # el UNIQUE del recibo es el guardia contra doble envío
                self.db.add(AnonymousReceipt(survey_id=survey.id, digest=self._digest(survey.id, member_id)))
                self.db.flush()
                self.db.execute(
                    update(Survey)
                    .where(Survey.id == survey.id)
                    .values(anonymous_completed=Survey.anonymous_completed + 1)
                    .execution_options(synchronize_session=False)
                )
                for qid, value in ordered:
                    self.db.add(Response(survey_id=survey.id, question_id=qid, recipient_id=None, value=value, created_at=None))
                if owner_key is not None:
                    self.db.execute(delete(ResponseDraft).where(
                        ResponseDraft.survey_id == survey.id, ResponseDraft.owner_key == owner_key
                    ))
                if survey.points_awarded > 0:
                    self.db.add(CompletionEvent(
                        survey_id=survey.id, member_id=member_id, points=survey.points_awarded, created_at=None,
                    ))
                self.db.flush()
        except IntegrityError:
            raise AlreadyCompletedError("Ya respondió esta encuesta")
        # sin identidad en el log
        logger.info("Encuesta anónima %s: un envío más (%d respuestas)", survey.id, len(ordered))

    # -------------------- vistas del encuestado -------------------- #

    def list_my_surveys(self, member_id: UUID) -> list[dict[str, Any]]:
        """Encuestas activas o cerradas del miembro (las archivadas no se muestran)."""
        rows = self.db.execute(
            select(Survey, Recipient)
            .join(Recipient, Recipient.survey_id == Survey.id)
            .where(Recipient.member_id == member_id, Survey.state.in_([ACTIVE, SURVEY_COMPLETED]))
            .order_by(Survey.published_at.desc())
        ).all()
        out = []
        for survey, rec in rows:
            if survey.is_anonymous:
                status = COMPLETED if self._has_receipt(survey.id, member_id) else PENDING
            else:
                status = rec.status
            out.append({"survey": survey, "status": status})
        return out

    def pending_count(self, member_id: UUID) -> int:
        """Encuestas activas que el miembro todavía no respondió (badge de notificaciones)."""
        return sum(
            1 for row in self.list_my_surveys(member_id)
            if row["survey"].state == ACTIVE and row["status"] == PENDING
        )
