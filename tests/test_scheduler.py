from sqlalchemy import select

from conftest import NOW, days
from survey_engine.models.recipient import CompletionEvent
from survey_engine.models.survey import Survey
from survey_engine.services.collector import Answer, ResponseCollector
from survey_engine.services.scheduler import (
    close_due_surveys, due_reminders, mark_events_delivered, pending_completion_events, reminder_due_at,
)


def test_close_due_surveys(db, build_survey, publish, member_ids):
    due, _ = build_survey([[("scale", {}, True)]], close_date=NOW + days(3))
    open_ended, _ = build_survey([[("scale", {}, True)]])
    publish(due, member_ids)
    publish(open_ended, member_ids)

    assert close_due_surveys(db, now=NOW + days(1)) == []
    assert close_due_surveys(db, now=NOW + days(3)) == [due.id]
    # idempotente
    assert close_due_surveys(db, now=NOW + days(4)) == []

    db.expire_all()
    assert db.get(Survey, due.id).state == "completed"
    assert db.get(Survey, open_ended.id).state == "active"


def test_reminders_go_to_pending_once(db, build_survey, publish, member_ids):
    survey, [[q]] = build_survey([[("scale", {}, True)]], reminder_days=2, is_mandatory=True)
    publish(survey, member_ids)
    assert reminder_due_at(survey) is not None
    ResponseCollector(db).submit_section(survey.id, member_ids[0], q.section_id, [Answer(q.id, 4)], now=NOW + days(1))

    assert due_reminders(db, now=NOW + days(1)) == []
    [batch] = due_reminders(db, now=NOW + days(2))
    assert batch.survey_id == survey.id
    assert batch.is_mandatory
    assert set(batch.member_ids) == set(member_ids[1:])
    assert due_reminders(db, now=NOW + days(5)) == []


def test_anonymous_reminders_go_to_everyone(db, build_survey, publish, member_ids):
    survey, [[q]] = build_survey([[("scale", {}, True)]], reminder_days=1, is_anonymous=True)
    publish(survey, member_ids)
    ResponseCollector(db).submit_section(survey.id, member_ids[0], q.section_id, [Answer(q.id, 4)], now=NOW)
    [batch] = due_reminders(db, now=NOW + days(1))
    assert batch.is_anonymous
    assert set(batch.member_ids) == set(member_ids)


def test_no_reminder_without_reminder_days(db, build_survey, publish, member_ids):
    survey, _ = build_survey([[("scale", {}, True)]])
    publish(survey, member_ids)
    assert reminder_due_at(survey) is None
    assert due_reminders(db, now=NOW + days(30)) == []


def test_completion_outbox(db, build_survey, publish, member_ids):
    survey, [[q]] = build_survey([[("scale", {}, True)]], points_awarded=20)
    publish(survey, member_ids)
    collector = ResponseCollector(db)
    for member in member_ids[:2]:
        collector.submit_section(survey.id, member, q.section_id, [Answer(q.id, 5)], now=NOW)

    pending = pending_completion_events(db)
    assert {e.member_id for e in pending} == set(member_ids[:2])
    assert all(e.points == 20 for e in pending)

    assert mark_events_delivered(db, [e.id for e in pending], now=NOW + days(1)) == 2
    assert pending_completion_events(db) == []
    assert mark_events_delivered(db, [e.id for e in db.scalars(select(CompletionEvent))]) == 0
