import uuid

import pytest
from sqlalchemy import func, select

from conftest import NOW, days
from survey_engine.core.errors import AlreadyCompletedError, InvalidStateError, NotFoundError
from survey_engine.models.recipient import AnonymousReceipt, CompletionEvent, Recipient
from survey_engine.models.response import Response, ResponseDraft
from survey_engine.models.survey import Survey
from survey_engine.schemas.surveys import SurveyCreateIn
from survey_engine.services.aggregation import AggregationEngine
from survey_engine.services.audience import StaticAudienceResolver
from survey_engine.services.collector import Answer, ResponseCollector
from survey_engine.services.drafts import SurveyDraftBuilder
from survey_engine.services.publication import PublicationController

LATER = NOW + days(1)


def _answers(pairs):
    return [Answer(question_id=q.id, value=v) for q, v in pairs]


def _submit(db, survey, member_id, questions, pairs, token=None, now=LATER):
    return ResponseCollector(db).submit_section(
        survey.id, member_id, questions[0].section_id, _answers(pairs), draft_token=token, now=now
    )


class TestNamedSurvey:
    def test_single_section_completes(self, db, build_survey, publish, member_ids):
        survey, [[q]] = build_survey([[("scale", {}, True)]], points_awarded=10)
        publish(survey, member_ids)

        result = _submit(db, survey, member_ids[0], [q], [(q, 4)])
        assert result.ok and result.completed

        rec = db.scalar(select(Recipient).where(Recipient.member_id == member_ids[0]))
        assert rec.status == "completed"
        assert rec.completed_at is not None
        rows = db.scalars(select(Response).where(Response.survey_id == survey.id)).all()
        assert [(r.recipient_id, r.value) for r in rows] == [(rec.id, 4)]

        event = db.scalar(select(CompletionEvent).where(CompletionEvent.survey_id == survey.id))
        assert (event.member_id, event.points) == (member_ids[0], 10)

    def test_no_event_without_points(self, db, build_survey, publish, member_ids):
        survey, [[q]] = build_survey([[("scale", {}, True)]])
        publish(survey, member_ids)
        _submit(db, survey, member_ids[0], [q], [(q, 4)])
        assert db.scalar(select(func.count(CompletionEvent.id))) == 0

    def test_second_submission_rejected(self, db, build_survey, publish, member_ids):
        survey, [[q]] = build_survey([[("scale", {}, True)]])
        publish(survey, member_ids)
        _submit(db, survey, member_ids[0], [q], [(q, 4)])
        with pytest.raises(AlreadyCompletedError):
            _submit(db, survey, member_ids[0], [q], [(q, 5)])
        assert db.scalar(select(func.count(Response.id))) == 1

    def test_errors_are_batched(self, db, build_survey, publish, member_ids):
        survey, [qs] = build_survey([[
            ("scale", {}, True),
            ("single", {"options": ["a", "b"]}, True),
            ("text", {}, False),
        ]])
        publish(survey, member_ids)
        result = _submit(db, survey, member_ids[0], qs, [(qs[0], 9), (qs[1], "z"), (qs[2], "ok")])
        assert not result.ok
        assert {(e.question_id, e.code) for e in result.errors} == {
            (qs[0].id, "out_of_range"), (qs[1].id, "unknown_option"),
        }
        assert db.scalar(select(func.count(Response.id))) == 0
        rec = db.scalar(select(Recipient).where(Recipient.member_id == member_ids[0]))
        assert rec.status == "pending"

    def test_required_multiple_choice_left_empty(self, db, build_survey, publish, member_ids):
        survey, [qs] = build_survey([[
            ("multiple", {"options": ["a", "b", "c"]}, True),
            ("scale", {}, True),
            ("toggle", {}, True),
        ]])
        publish(survey, member_ids)
        result = _submit(db, survey, member_ids[0], qs, [(qs[0], []), (qs[1], 3), (qs[2], True)])
        assert [(e.question_id, e.code) for e in result.errors] == [(qs[0].id, "required")]

    def test_unknown_and_duplicate_answers(self, db, build_survey, publish, member_ids):
        survey, [qs] = build_survey([[("scale", {}, False)]])
        publish(survey, member_ids)
        stray = uuid.uuid4()
        answers = [Answer(qs[0].id, 3), Answer(qs[0].id, 4), Answer(stray, 1)]
        result = ResponseCollector(db).submit_section(survey.id, member_ids[0], qs[0].section_id, answers, now=LATER)
        codes = {(e.question_id, e.code) for e in result.errors}
        assert codes == {(qs[0].id, "duplicate_answer"), (stray, "unknown_question")}

    def test_not_a_recipient(self, db, build_survey, publish, member_ids):
        survey, [[q]] = build_survey([[("scale", {}, True)]])
        publish(survey, member_ids[:1])
        with pytest.raises(NotFoundError):
            _submit(db, survey, member_ids[2], [q], [(q, 3)])

    def test_only_active_surveys_accept(self, db, build_survey, publish, member_ids):
        survey, [[q]] = build_survey([[("scale", {}, True)]], open_date=NOW + days(2), close_date=NOW + days(4))
        with pytest.raises(InvalidStateError):
            _submit(db, survey, member_ids[0], [q], [(q, 3)])
        publish(survey, member_ids)
        with pytest.raises(InvalidStateError):
            _submit(db, survey, member_ids[0], [q], [(q, 3)], now=NOW + days(1))
        with pytest.raises(InvalidStateError):
            _submit(db, survey, member_ids[0], [q], [(q, 3)], now=NOW + days(4))
        assert _submit(db, survey, member_ids[0], [q], [(q, 3)], now=NOW + days(3)).completed

    def test_closed_survey_rejects(self, db, build_survey, publish, member_ids):
        survey, [[q]] = build_survey([[("scale", {}, True)]])
        publish(survey, member_ids)
        PublicationController(db).complete(survey.id, now=LATER)
        with pytest.raises(InvalidStateError):
            _submit(db, survey, member_ids[0], [q], [(q, 3)])


class TestMultiSection:
    def test_drafts_then_final(self, db, build_survey, publish, member_ids):
        survey, [s1, s2] = build_survey([
            [("scale", {}, True), ("text", {}, False)],
            [("nps", {}, True)],
        ])
        publish(survey, member_ids)
        me = member_ids[0]

        first = _submit(db, survey, me, s1, [(s1[0], 5), (s1[1], "bien")])
        assert first.ok and not first.completed
        assert db.scalar(select(func.count(Response.id))) == 0
        drafts = ResponseCollector(db).load_drafts(survey.id, me)
        assert drafts == {s1[0].section_id: {s1[0].id: 5, s1[1].id: "bien"}}

        # reenviar una sección reemplaza su borrador
        _submit(db, survey, me, s1, [(s1[0], 4)])
        assert ResponseCollector(db).load_drafts(survey.id, me) == {s1[0].section_id: {s1[0].id: 4}}

        final = _submit(db, survey, me, s2, [(s2[0], 10)])
        assert final.completed
        values = dict(db.execute(select(Response.question_id, Response.value)).all())
        assert values == {s1[0].id: 4, s2[0].id: 10}
        assert db.scalar(select(func.count(ResponseDraft.id))) == 0

    def test_final_section_checks_earlier_required(self, db, build_survey, publish, member_ids):
        survey, [s1, s2] = build_survey([
            [("scale", {}, True), ("text", {}, False)],
            [("nps", {}, True)],
        ])
        publish(survey, member_ids)
        result = _submit(db, survey, member_ids[0], s2, [(s2[0], 7)])
        assert [(e.question_id, e.code) for e in result.errors] == [(s1[0].id, "required")]
        rec = db.scalar(select(Recipient).where(Recipient.member_id == member_ids[0]))
        assert rec.status == "pending"

    def test_anonymous_drafts_use_token(self, db, build_survey, publish, member_ids):
        survey, [s1, s2] = build_survey([[("scale", {}, True)], [("toggle", {}, True)]], is_anonymous=True)
        publish(survey, member_ids)
        me = member_ids[0]

        first = _submit(db, survey, me, s1, [(s1[0], 2)])
        assert first.draft_token is not None
        owners = db.scalars(select(ResponseDraft.owner_key)).all()
        assert owners == [f"token:{first.draft_token}"]
        assert all(str(me) not in o for o in owners)

        collector = ResponseCollector(db)
        assert collector.load_drafts(survey.id, me, first.draft_token) == {s1[0].section_id: {s1[0].id: 2}}
        assert collector.load_drafts(survey.id, me) == {}

        final = _submit(db, survey, me, s2, [(s2[0], False)], token=first.draft_token)
        assert final.completed
        assert db.scalar(select(func.count(Response.id))) == 2
        assert db.scalar(select(func.count(ResponseDraft.id))) == 0


class TestAnonymous:
    def test_two_of_three_submit(self, db, build_survey, publish, member_ids):
        survey, [[q]] = build_survey([[("scale", {}, True)]], is_anonymous=True, points_awarded=5)
        publish(survey, member_ids)

        for member, value in zip(member_ids[:2], (5, 3)):
            assert _submit(db, survey, member, [q], [(q, value)]).completed

        rows = db.scalars(select(Response).where(Response.survey_id == survey.id)).all()
        assert len(rows) == 2
        assert all(r.recipient_id is None and r.created_at is None for r in rows)

        receipts = db.scalars(select(AnonymousReceipt.digest)).all()
        assert len(receipts) == 2
        assert not any(str(m) in d or m.hex in d for d in receipts for m in member_ids)

        # los recipients no delatan quién respondió
        assert {r.status for r in db.scalars(select(Recipient).where(Recipient.survey_id == survey.id))} == {"pending"}
        db.expire_all()
        assert db.get(Survey, survey.id).anonymous_completed == 2

        stats = AggregationEngine(db).compute_survey_stats(survey.id)
        assert stats["completion_rate"] == 0.667
        assert stats["completions_by_date"] is None
        with pytest.raises(NotFoundError):
            AggregationEngine(db).raw_responses(survey.id, q.id)

        events = db.scalars(select(CompletionEvent)).all()
        assert len(events) == 2 and all(e.created_at is None for e in events)

    def test_anonymous_single_submission(self, db, build_survey, publish, member_ids):
        survey, [[q]] = build_survey([[("scale", {}, True)]], is_anonymous=True)
        publish(survey, member_ids)
        _submit(db, survey, member_ids[0], [q], [(q, 5)])
        with pytest.raises(AlreadyCompletedError):
            _submit(db, survey, member_ids[0], [q], [(q, 1)])
        assert db.scalar(select(func.count(Response.id))) == 1

    def test_my_surveys_status(self, db, build_survey, publish, member_ids):
        named, [[qn]] = build_survey([[("scale", {}, True)]])
        anon, [[qa]] = build_survey([[("scale", {}, True)]], is_anonymous=True)
        draft, _ = build_survey([[("scale", {}, True)]])
        publish(named, member_ids)
        publish(anon, member_ids)
        _submit(db, anon, member_ids[0], [qa], [(qa, 4)])

        mine = {row["survey"].id: row["status"] for row in ResponseCollector(db).list_my_surveys(member_ids[0])}
        assert mine == {named.id: "pending", anon.id: "completed"}
        assert draft.id not in mine


def _published(Session, member_ids, **meta):
    with Session() as setup:
        builder = SurveyDraftBuilder(setup)
        survey = builder.create_survey(SurveyCreateIn(title="Carrera", **meta))
        section = builder.add_section(survey.id, "única")
        q = builder.add_question(section.id, "scale", {})
        PublicationController(setup).publish(survey.id, StaticAudienceResolver.of(member_ids), now=NOW)
        return survey.id, section.id, q.id


class _InterleavedCollector(ResponseCollector):
    """Corre `interleave` (otra sesión) justo después de verificar el recibo anónimo."""

    def __init__(self, db, interleave):
        super().__init__(db)
        self.interleave = interleave

    def _has_receipt(self, survey_id, member_id):
        seen = super()._has_receipt(survey_id, member_id)
        if self.interleave is not None:
            run, self.interleave = self.interleave, None
            run()
        return seen


def test_concurrent_final_submission_completes_once(race_sessions, member_ids):
    Session = race_sessions
    survey_id, section_id, question_id = _published(Session, member_ids, points_awarded=3)

    a, b = Session(), Session()
    try:
        # b ve al destinatario todavía pendiente
        stale = b.scalar(select(Recipient).where(Recipient.member_id == member_ids[0]))
        assert stale.status == "pending"

        done = ResponseCollector(a).submit_section(survey_id, member_ids[0], section_id, [Answer(question_id, 5)], now=LATER)
        assert done.completed

        with pytest.raises(AlreadyCompletedError):
            ResponseCollector(b).submit_section(survey_id, member_ids[0], section_id, [Answer(question_id, 1)], now=LATER)
    finally:
        a.close(); b.close()

    with Session() as check:
        assert check.scalar(select(func.count(Response.id))) == 1
        assert check.scalar(select(Response.value)) == 5
        assert check.scalar(select(func.count(CompletionEvent.id))) == 1


def test_concurrent_anonymous_final_submission_completes_once(race_sessions, member_ids):
    Session = race_sessions
    survey_id, section_id, question_id = _published(Session, member_ids, points_awarded=3, is_anonymous=True)

    a, b = Session(), Session()
    try:
        def first_wins():
            done = ResponseCollector(a).submit_section(survey_id, member_ids[0], section_id, [Answer(question_id, 5)], now=LATER)
            assert done.completed

        # b pasa la verificación del recibo antes de que a confirme
        with pytest.raises(AlreadyCompletedError):
            _InterleavedCollector(b, first_wins).submit_section(
                survey_id, member_ids[0], section_id, [Answer(question_id, 1)], now=LATER
            )
    finally:
        a.close(); b.close()

    with Session() as check:
        assert check.scalar(select(func.count(AnonymousReceipt.id))) == 1
        assert check.get(Survey, survey_id).anonymous_completed == 1
        assert check.scalars(select(Response.value)).all() == [5]
        assert check.scalar(select(func.count(CompletionEvent.id))) == 1


def test_submission_racing_close_is_rejected(race_sessions, member_ids):
    Session = race_sessions
    survey_id, section_id, question_id = _published(Session, member_ids)

    a, b = Session(), Session()
    try:
        # b cargó la encuesta mientras seguía activa
        assert b.get(Survey, survey_id).state == "active"
        PublicationController(a).complete(survey_id, now=LATER)

        with pytest.raises(InvalidStateError):
            ResponseCollector(b).submit_section(survey_id, member_ids[0], section_id, [Answer(question_id, 4)], now=LATER)
    finally:
        a.close(); b.close()

    with Session() as check:
        assert check.scalar(select(func.count(Response.id))) == 0
        assert set(check.scalars(select(Recipient.status))) == {"pending"}


def test_pending_count_ignores_answered_and_closed(db, build_survey, publish, member_ids):
    me = member_ids[0]
    named, [[q1]] = build_survey([[("scale", {}, True)]])
    anon, [[q2]] = build_survey([[("scale", {}, True)]], is_anonymous=True)
    closed, _ = build_survey([[("scale", {}, True)]])
    for s in (named, anon, closed):
        publish(s, member_ids)
    PublicationController(db).complete(closed.id)

    collector = ResponseCollector(db)
    assert collector.pending_count(me) == 2
    _submit(db, anon, me, [q2], [(q2, 3)])
    assert collector.pending_count(me) == 1
    assert collector.pending_count(member_ids[1]) == 2
