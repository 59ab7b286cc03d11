# survey_engine/services/scheduler.py
"""
Ganchos para el scheduler externo. El motor no tiene timers: un cron/worker
llama periódicamente a estas funciones (ver scripts/run_scheduler.py).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from survey_engine.core.timeutils import as_utc, utcnow
from survey_engine.models.recipient import PENDING, CompletionEvent, Recipient
from survey_engine.models.survey import ACTIVE, Survey
from survey_engine.services.common import atomic
from survey_engine.services.publication import PublicationController, is_past_due

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderBatch:
    survey_id: UUID
    title: str
    is_mandatory: bool
    is_anonymous: bool
    member_ids: list[UUID]


def reminder_due_at(survey: Survey) -> Optional[datetime]:
    if not survey.reminder_days or survey.published_at is None:
        return None
    return as_utc(survey.published_at) + timedelta(days=survey.reminder_days)


def close_due_surveys(db: Session, now: Optional[datetime] = None) -> list[UUID]:
    """Cierra las encuestas activas cuya close_date ya pasó. Idempotente."""
    now = now or utcnow()
    closed = []
    controller = PublicationController(db)
    for survey in db.scalars(select(Survey).where(Survey.state == ACTIVE, Survey.close_date.is_not(None))).all():
        if is_past_due(survey, now):
            controller.complete(survey.id, now=now)
            closed.append(survey.id)
    if closed:
        logger.info("Encuestas cerradas por vencimiento: %d", len(closed))
    return closed


def due_reminders(db: Session, now: Optional[datetime] = None) -> list[ReminderBatch]:
    """
    Recordatorios vencidos (published_at + reminder_days). Cada encuesta se
    recuerda una sola vez. En anónimas no se sabe quién falta: va a todos.
    """
    now = now or utcnow()
    batches: list[ReminderBatch] = []
    candidates = db.scalars(
        select(Survey).where(Survey.state == ACTIVE, Survey.reminder_days > 0, Survey.reminder_sent_at.is_(None))
    ).all()
    for survey in candidates:
        due = reminder_due_at(survey)
        if due is None or due > now or is_past_due(survey, now):
            continue
        with atomic(db):
            # marca condicional: dos schedulers en paralelo no duplican el envío
            res = db.execute(
                update(Survey)
                .where(Survey.id == survey.id, Survey.reminder_sent_at.is_(None))
                .values(reminder_sent_at=now)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                continue
            stmt = select(Recipient.member_id).where(Recipient.survey_id == survey.id)
            if not survey.is_anonymous:
                stmt = stmt.where(Recipient.status == PENDING)
            members = list(db.scalars(stmt.order_by(Recipient.member_id)).all())
        batches.append(ReminderBatch(
            survey_id=survey.id,
            title=survey.title,
            is_mandatory=survey.is_mandatory,
            is_anonymous=survey.is_anonymous,
            member_ids=members,
        ))
    return batches


# -------------------- outbox para el ledger de puntos -------------------- #

def pending_completion_events(db: Session, limit: int = 500) -> list[CompletionEvent]:
    return list(
        db.scalars(
            select(CompletionEvent).where(CompletionEvent.delivered_at.is_(None)).limit(limit)
        ).all()
    )


def mark_events_delivered(db: Session, event_ids: list[UUID], now: Optional[datetime] = None) -> int:
    if not event_ids:
        return 0
    now = now or utcnow()
    with atomic(db):
        res = db.execute(
            update(CompletionEvent)
            .where(CompletionEvent.id.in_(event_ids), CompletionEvent.delivered_at.is_(None))
            .values(delivered_at=now)
            .execution_options(synchronize_session=False)
        )
    return res.rowcount
