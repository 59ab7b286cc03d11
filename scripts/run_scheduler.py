#!/usr/bin/env python3
"""
Tick del scheduler externo (cron cada pocos minutos):
  1) cierra encuestas vencidas
  2) emite recordatorios pendientes
  3) drena el outbox de puntos hacia el ledger

La entrega real (notificaciones / ledger) es de otros servicios; aquí se
registran en el log para que el worker que envuelve este script las publique.
"""
import logging
import sys

from survey_engine.core.logging import configure_logging
from survey_engine.db.session import SessionLocal
from survey_engine.services.scheduler import (
    close_due_surveys, due_reminders, mark_events_delivered, pending_completion_events,
)

logger = logging.getLogger("run_scheduler")


def tick(db) -> dict:
    closed = close_due_surveys(db)

    reminders = due_reminders(db)
    for batch in reminders:
        logger.info(
            "Recordatorio encuesta %s (%s): %d destinatarios, obligatoria=%s",
            batch.survey_id, batch.title, len(batch.member_ids), batch.is_mandatory,
        )

    events = pending_completion_events(db)
    for ev in events:
        logger.info("Puntos: encuesta %s miembro %s +%d", ev.survey_id, ev.member_id, ev.points)
    delivered = mark_events_delivered(db, [ev.id for ev in events])

    return {"closed": len(closed), "reminders": len(reminders), "events": delivered}


def main() -> int:
    configure_logging()
    with SessionLocal() as db:
        summary = tick(db)
    logger.info("Tick: %s", summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
