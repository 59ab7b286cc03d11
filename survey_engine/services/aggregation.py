# survey_engine/services/aggregation.py
"""
Estadísticas por pregunta y por encuesta.

Los Stat nunca se persisten: siempre salen de survey_responses. Para no
re-escanear todo el historial en cada consulta, StatsCache guarda por encuesta
los acumuladores del registro de tipos y un watermark (mayor Response.id ya
plegado); cada consulta solo pliega las filas nuevas.

El camino incremental y el completo usan los mismos acumuladores, y el
resultado es independiente del orden (sumas racionales exactas), así que ambos
coinciden. Si el conteo de filas plegadas no coincide con el de la tabla (p.ej.
transacciones que comitean fuera de orden de id) se recalcula desde cero.
"""
from __future__ import annotations

import copy
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from survey_engine.core.config import settings
from survey_engine.core.errors import NotFoundError
from survey_engine.core.timeutils import as_utc
from survey_engine.models.recipient import COMPLETED, Recipient
from survey_engine.models.response import Response
from survey_engine.models.survey import Question, Section, Survey
from survey_engine.services.common import ensure_question, ensure_survey
from survey_engine.services.question_types import QuestionTypeRegistry, registry as default_registry

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    structure: tuple
    watermark: int = 0
    folded: int = 0
    accumulators: dict[UUID, dict] = field(default_factory=dict)


class StatsCache:
    """Cache en proceso, reemplazable. Nunca es fuente de verdad."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[UUID, _Entry] = {}

    def get(self, survey_id: UUID) -> Optional[_Entry]:
        with self._lock:
            entry = self._entries.get(survey_id)
            return copy.deepcopy(entry) if entry else None

    def put(self, survey_id: UUID, entry: _Entry) -> None:
        with self._lock:
            current = self._entries.get(survey_id)
            # no pisar un estado más avanzado calculado por otra request
            if current is None or current.watermark <= entry.watermark:
                self._entries[survey_id] = entry

    def invalidate(self, survey_id: UUID) -> None:
        with self._lock:
            self._entries.pop(survey_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


stats_cache = StatsCache()


class AggregationEngine:
    def __init__(self, db: Session, registry: Optional[QuestionTypeRegistry] = None, cache: Optional[StatsCache] = None):
        self.db = db
        self.registry = registry or default_registry
        self.cache = cache if cache is not None else stats_cache

    def questions(self, survey_id: UUID) -> list[Question]:
        return list(
            self.db.scalars(
                select(Question)
                .join(Section, Section.id == Question.section_id)
                .where(Question.survey_id == survey_id)
                .order_by(Section.position, Question.position)
            )
        )

    def _fresh_entry(self, questions: list[Question], structure: tuple) -> _Entry:
        return _Entry(
            structure=structure,
            accumulators={
                q.id: self.registry.describe(q.type).new_accumulator(q.config or {}) for q in questions
            },
        )

    def _fold(self, entry: _Entry, questions: list[Question], survey_id: UUID) -> None:
        by_id = {q.id: q for q in questions}
        rows = self.db.execute(
            select(Response.id, Response.question_id, Response.value)
            .where(Response.survey_id == survey_id, Response.id > entry.watermark)
            .order_by(Response.id)
        ).all()
        for rid, qid, value in rows:
            q = by_id.get(qid)
            if q is None:
                continue
            self.registry.describe(q.type).accumulate(entry.accumulators[qid], q.config or {}, value)
            entry.watermark = max(entry.watermark, rid)
        entry.folded += len(rows)

    def _completion(self, survey: Survey) -> tuple[int, int, float]:
        total = survey.total_recipients or 0
        if survey.is_anonymous:
            completed = survey.anonymous_completed or 0
        else:
            completed = self.db.scalar(
                select(func.count(Recipient.id)).where(
                    Recipient.survey_id == survey.id, Recipient.status == COMPLETED
                )
            ) or 0
        rate = round(completed / total, settings.STATS_DECIMALS) if total else 0.0
        return total, completed, rate

    def _completions_by_date(self, survey: Survey) -> Optional[list[dict[str, Any]]]:
        # en anónimas no hay fechas individuales que agrupar
        if survey.is_anonymous:
            return None
        stamps = self.db.scalars(
            select(Recipient.completed_at).where(
                Recipient.survey_id == survey.id, Recipient.status == COMPLETED
            )
        ).all()
        per_day = Counter(as_utc(ts).date().isoformat() for ts in stamps if ts is not None)
        return [{"date": d, "count": n} for d, n in sorted(per_day.items())]

    def compute_survey_stats(self, survey_id: UUID, incremental: bool = True) -> dict[str, Any]:
        survey = ensure_survey(self.db, survey_id)
        questions = self.questions(survey_id)
        structure = tuple((q.id, q.type) for q in questions)

        entry = self.cache.get(survey_id) if incremental else None
        if entry is None or entry.structure != structure:
            entry = self._fresh_entry(questions, structure)
        self._fold(entry, questions, survey_id)

        total_rows = self.db.scalar(
            select(func.count(Response.id)).where(Response.survey_id == survey_id)
        ) or 0
        if entry.folded != total_rows:
            logger.info("Stats de %s desfasadas (%d != %d): recálculo completo", survey_id, entry.folded, total_rows)
            entry = self._fresh_entry(questions, structure)
            self._fold(entry, questions, survey_id)
        self.cache.put(survey_id, copy.deepcopy(entry))

        per_question = {}
        for q in questions:
            qtype = self.registry.describe(q.type)
            per_question[q.id] = {"type": qtype.tag, **qtype.finalize(entry.accumulators[q.id], q.config or {})}

        total, completed, rate = self._completion(survey)
        return {
            "survey_id": survey.id,
            "state": survey.state,
            "is_anonymous": survey.is_anonymous,
            "total_recipients": total,
            "completed_recipients": completed,
            "completion_rate": rate,
            "completions_by_date": self._completions_by_date(survey),
            "per_question": per_question,
        }

    def question_stats(self, survey_id: UUID, question_id: UUID) -> dict[str, Any]:
        q = ensure_question(self.db, question_id)
        if q.survey_id != survey_id:
            raise NotFoundError("Pregunta no encontrada en esta encuesta")
        values = self.db.scalars(
            select(Response.value).where(Response.question_id == question_id)
        ).all()
        return self.registry.describe(q.type).aggregate(q, values)

    def raw_responses(self, survey_id: UUID, question_id: UUID) -> list[dict[str, Any]]:
        """
        Respuestas individuales (incluido texto libre) con su autor.
        En encuestas anónimas no existen: NotFoundError.
        """
        survey = ensure_survey(self.db, survey_id)
        if survey.is_anonymous:
            raise NotFoundError("Las respuestas individuales no están disponibles en encuestas anónimas")
        q = ensure_question(self.db, question_id)
        if q.survey_id != survey_id:
            raise NotFoundError("Pregunta no encontrada en esta encuesta")
        rows = self.db.execute(
            select(Response.value, Response.created_at, Recipient.member_id)
            .join(Recipient, Recipient.id == Response.recipient_id)
            .where(Response.question_id == question_id)
            .order_by(Response.id)
        ).all()
        return [{"member_id": m, "value": v, "created_at": ts} for v, ts, m in rows]
