import pytest
from sqlalchemy import func, select

from conftest import NOW, explicit
from survey_engine.core.errors import (
    ImmutableStructureError, InvalidInputError, InvalidOrderError, InvalidQuestionConfigError,
    NotFoundError, UnknownQuestionTypeError,
)
from survey_engine.models.audit import AuditLog
from survey_engine.models.survey import Question, Section, Survey
from survey_engine.schemas.surveys import SurveyCreateIn, SurveyUpdateIn
from survey_engine.services.audience import StaticAudienceResolver
from survey_engine.services.drafts import SurveyDraftBuilder
from survey_engine.services.publication import PublicationController


def _positions(items):
    return [i.position for i in items]


def test_create_survey_is_draft_and_audited(db, build_survey, admin_id):
    survey, _ = build_survey([])
    assert survey.state == "draft"
    assert survey.audience_kind == "all"
    actions = db.scalars(select(AuditLog.action).where(AuditLog.actor_id == admin_id)).all()
    assert "survey.create" in actions


def test_explicit_audience_is_stored(db, build_survey, member_ids):
    survey, _ = build_survey([], audience=explicit(member_ids))
    assert survey.audience_kind == "explicit"
    assert sorted(survey.audience_ids) == sorted(str(m) for m in member_ids)


def test_positions_stay_dense_after_remove_and_reorder(db, build_survey):
    survey, sections = build_survey([
        [("scale", {}, True), ("single", {"options": ["a", "b"]}, True), ("text", {}, False)],
        [("nps", {}, True)],
        [("toggle", {}, True)],
    ])
    builder = SurveyDraftBuilder(db)
    q0, q1, q2 = sections[0]

    builder.remove_question(q1.id)
    remaining = db.scalars(select(Question).where(Question.section_id == q0.section_id).order_by(Question.position)).all()
    assert [q.id for q in remaining] == [q0.id, q2.id]
    assert _positions(remaining) == [0, 1]

    reordered = builder.reorder_questions(q0.section_id, [q2.id, q0.id])
    assert [q.id for q in reordered] == [q2.id, q0.id]
    assert _positions(reordered) == [0, 1]

    section_ids = [s.id for s in db.scalars(select(Section).where(Section.survey_id == survey.id).order_by(Section.position))]
    builder.remove_section(section_ids[1])
    left = db.scalars(select(Section).where(Section.survey_id == survey.id).order_by(Section.position)).all()
    assert [s.id for s in left] == [section_ids[0], section_ids[2]]
    assert _positions(left) == [0, 1]
    # la sección se lleva sus preguntas
    assert db.scalar(select(func.count(Question.id)).where(Question.survey_id == survey.id)) == 3

    swapped = builder.reorder_sections(survey.id, [section_ids[2], section_ids[0]])
    assert _positions(swapped) == [0, 1]
    tree = builder.get_survey_tree(survey.id)
    db.expire_all()
    assert [s.id for s in tree.sections] == [section_ids[2], section_ids[0]]


def test_reorder_must_be_a_permutation(db, build_survey):
    survey, sections = build_survey([[("scale", {}, True), ("star", {}, True)]])
    builder = SurveyDraftBuilder(db)
    a, b = sections[0]
    with pytest.raises(InvalidOrderError):
        builder.reorder_questions(a.section_id, [a.id])
    with pytest.raises(InvalidOrderError):
        builder.reorder_questions(a.section_id, [a.id, a.id])
    db.expire_all()
    assert _positions(sorted(db.get(Section, a.section_id).questions, key=lambda q: q.position)) == [0, 1]


def test_unknown_type_writes_nothing(db, build_survey):
    survey, sections = build_survey([[]])
    section_id = db.scalars(select(Section.id).where(Section.survey_id == survey.id)).one()
    builder = SurveyDraftBuilder(db)
    with pytest.raises(UnknownQuestionTypeError):
        builder.add_question(section_id, "hologram", {})
    with pytest.raises(InvalidQuestionConfigError):
        builder.add_question(section_id, "single", {"options": []})
    assert db.scalar(select(func.count(Question.id)).where(Question.section_id == section_id)) == 0


def test_missing_parents(db):
    import uuid
    builder = SurveyDraftBuilder(db)
    with pytest.raises(NotFoundError):
        builder.add_section(uuid.uuid4(), "x")
    with pytest.raises(NotFoundError):
        builder.add_question(uuid.uuid4(), "scale", {})


def test_update_validates_dates(db, build_survey):
    from datetime import datetime, timezone
    survey, _ = build_survey([])
    builder = SurveyDraftBuilder(db)
    builder.update_survey(survey.id, SurveyUpdateIn(open_date=datetime(2026, 3, 10, tzinfo=timezone.utc)))
    with pytest.raises(InvalidInputError):
        builder.update_survey(survey.id, SurveyUpdateIn(close_date=datetime(2026, 3, 1, tzinfo=timezone.utc)))


def test_structure_is_frozen_after_publish(db, build_survey, publish, member_ids):
    survey, sections = build_survey([[("scale", {}, True), ("star", {}, True)]])
    publish(survey, member_ids)
    builder = SurveyDraftBuilder(db)
    q = sections[0][0]
    before = [(x.id, x.position, x.type) for x in db.scalars(select(Question).where(Question.survey_id == survey.id).order_by(Question.position))]

    attempts = [
        lambda: builder.add_section(survey.id, "nueva"),
        lambda: builder.add_question(q.section_id, "scale", {}),
        lambda: builder.remove_question(q.id),
        lambda: builder.remove_section(q.section_id),
        lambda: builder.reorder_questions(q.section_id, [sections[0][1].id, q.id]),
        lambda: builder.update_survey(survey.id, SurveyUpdateIn(title="otro")),
        lambda: builder.delete_survey(survey.id),
    ]
    for attempt in attempts:
        with pytest.raises(ImmutableStructureError):
            attempt()

    db.expire_all()
    after = [(x.id, x.position, x.type) for x in db.scalars(select(Question).where(Question.survey_id == survey.id).order_by(Question.position))]
    assert after == before


def test_delete_draft(db, build_survey):
    survey, _ = build_survey([[("scale", {}, True)]])
    SurveyDraftBuilder(db).delete_survey(survey.id)
    with pytest.raises(NotFoundError):
        SurveyDraftBuilder(db).get_survey_tree(survey.id)


def test_edit_racing_publish_sees_frozen_structure(race_sessions, member_ids):
    Session = race_sessions
    with Session() as setup:
        builder = SurveyDraftBuilder(setup)
        survey = builder.create_survey(SurveyCreateIn(title="Carrera"))
        section = builder.add_section(survey.id, "única")
        first = builder.add_question(section.id, "scale", {})
        second = builder.add_question(section.id, "toggle", {})
        survey_id, section_id, ids = survey.id, section.id, [first.id, second.id]

    a, b = Session(), Session()
    try:
        # b cargó el borrador antes de que a publicara
        assert b.get(Survey, survey_id).state == "draft"
        PublicationController(a).publish(survey_id, StaticAudienceResolver.of(member_ids), now=NOW)

        editor = SurveyDraftBuilder(b)
        with pytest.raises(ImmutableStructureError):
            editor.add_question(section_id, "text", {})
        with pytest.raises(ImmutableStructureError):
            editor.reorder_questions(section_id, list(reversed(ids)))
    finally:
        a.close(); b.close()

    with Session() as check:
        rows = check.execute(select(Question.id, Question.position).order_by(Question.position)).all()
        assert [tuple(r) for r in rows] == [(ids[0], 0), (ids[1], 1)]
