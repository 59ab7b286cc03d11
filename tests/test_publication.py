import uuid

import pytest
from sqlalchemy import func, select

from conftest import NOW, days, explicit
from survey_engine.core.errors import EmptySurveyError, InvalidInputError, InvalidStateError
from survey_engine.models.member import Member
from survey_engine.models.recipient import Recipient
from survey_engine.services.audience import DirectoryAudienceResolver, StaticAudienceResolver
from survey_engine.services.publication import PublicationController, is_open, is_past_due


def _recipients(db, survey_id):
    return set(db.scalars(select(Recipient.member_id).where(Recipient.survey_id == survey_id)).all())


def test_empty_survey_cannot_be_published(db, build_survey, member_ids):
    survey, _ = build_survey([[]])
    with pytest.raises(EmptySurveyError):
        PublicationController(db).publish(survey.id, StaticAudienceResolver.of(member_ids), now=NOW)
    db.expire_all()
    assert survey.state == "draft"
    assert _recipients(db, survey.id) == set()


def test_publish_snapshots_audience(db, build_survey, publish, member_ids):
    survey, _ = build_survey([[("scale", {}, True)]])
    published = publish(survey, member_ids)
    assert published.state == "active"
    assert published.total_recipients == 3
    assert published.published_at is not None
    assert _recipients(db, survey.id) == set(member_ids)
    assert all(r.status == "pending" for r in db.scalars(select(Recipient).where(Recipient.survey_id == survey.id)))


def test_explicit_audience_ignores_unknown_members(db, build_survey, publish, member_ids):
    stranger = uuid.uuid4()
    survey, _ = build_survey([[("scale", {}, True)]], audience=explicit(member_ids[:2] + [stranger]))
    publish(survey, member_ids)
    assert _recipients(db, survey.id) == set(member_ids[:2])


def test_empty_audience_rejected(db, build_survey):
    survey, _ = build_survey([[("scale", {}, True)]])
    with pytest.raises(InvalidInputError):
        PublicationController(db).publish(survey.id, StaticAudienceResolver.of([]), now=NOW)
    db.expire_all()
    assert survey.state == "draft"


def test_directory_resolver_by_department(db, build_survey, add_members, member_ids):
    from survey_engine.schemas.surveys import AudienceIn
    add_members(member_ids[:2], department="Ventas")
    add_members(member_ids[2:], department="Producto")
    inactive = uuid.uuid4()
    db.add(Member(id=inactive, email="baja@example.com", department="Ventas", status="inactivo"))
    db.commit()

    survey, _ = build_survey([[("scale", {}, True)]], audience=AudienceIn(kind="department", department="Ventas"))
    PublicationController(db).publish(survey.id, DirectoryAudienceResolver(db), now=NOW)
    assert _recipients(db, survey.id) == set(member_ids[:2])


def test_snapshot_does_not_follow_directory_changes(db, build_survey, add_members, member_ids):
    add_members(member_ids)
    survey, _ = build_survey([[("scale", {}, True)]])
    PublicationController(db).publish(survey.id, DirectoryAudienceResolver(db), now=NOW)
    add_members([uuid.uuid4()])
    assert _recipients(db, survey.id) == set(member_ids)


def test_publish_twice_fails(db, build_survey, publish, member_ids):
    survey, _ = build_survey([[("scale", {}, True)]])
    publish(survey, member_ids)
    with pytest.raises(InvalidStateError):
        publish(survey, member_ids)
    assert db.scalar(select(func.count(Recipient.id)).where(Recipient.survey_id == survey.id)) == 3


def test_complete_is_idempotent_and_archive(db, build_survey, publish, member_ids):
    survey, _ = build_survey([[("scale", {}, True)]])
    controller = PublicationController(db)
    with pytest.raises(InvalidStateError):
        controller.complete(survey.id)
    with pytest.raises(InvalidStateError):
        controller.archive(survey.id)

    publish(survey, member_ids)
    with pytest.raises(InvalidStateError):
        controller.archive(survey.id)

    first = controller.complete(survey.id, now=NOW + days(1))
    completed_at = first.completed_at
    again = controller.complete(survey.id, now=NOW + days(2))
    assert again.state == "completed"
    assert again.completed_at == completed_at

    archived = controller.archive(survey.id, now=NOW + days(3))
    assert archived.state == "archived"
    with pytest.raises(InvalidStateError):
        controller.complete(survey.id)


def test_open_and_past_due(db, build_survey, publish, member_ids):
    survey, _ = build_survey(
        [[("scale", {}, True)]], open_date=NOW + days(1), close_date=NOW + days(5)
    )
    publish(survey, member_ids)
    db.refresh(survey)
    assert not is_open(survey, NOW)
    assert is_open(survey, NOW + days(2))
    assert not is_past_due(survey, NOW + days(2))
    assert is_past_due(survey, NOW + days(5))
