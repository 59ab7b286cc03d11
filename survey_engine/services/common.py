# survey_engine/services/common.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from survey_engine.core.errors import NotFoundError
from survey_engine.models.survey import Question, Section, Survey


@contextmanager
def atomic(db: Session) -> Iterator[None]:
    """Una operación = una transacción. Si algo falla no queda nada a medias."""
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def ensure_survey(db: Session, survey_id: UUID, *, lock: bool = False, read: bool = False) -> Survey:
    stmt = select(Survey).where(Survey.id == survey_id)
    if lock:
        # FOR UPDATE serializa ediciones contra publicación (no-op en SQLite)
        stmt = stmt.with_for_update(read=read).execution_options(populate_existing=True)
    s = db.execute(stmt).scalar_one_or_none()
    if not s:
        raise NotFoundError("Encuesta no encontrada")
    return s


def ensure_section(db: Session, section_id: UUID) -> Section:
    sec = db.get(Section, section_id)
    if not sec:
        raise NotFoundError("Sección no encontrada")
    return sec


def ensure_question(db: Session, question_id: UUID) -> Question:
    q = db.get(Question, question_id)
    if not q:
        raise NotFoundError("Pregunta no encontrada")
    return q


def renumber(db: Session, items: Sequence) -> None:
    """
    Reasigna position 0..n-1 en el orden recibido.
    Dos pasadas para no chocar con los UNIQUE (padre, position) a mitad de camino.
    """
    for i, item in enumerate(items):
        item.position = -(i + 1)
    db.flush()
    for i, item in enumerate(items):
        item.position = i
    db.flush()
