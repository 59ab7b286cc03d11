import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ANONYMITY_SECRET", "test-anon-secret")

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from survey_engine.core.security import create_access_token
from survey_engine.db.base import Base
from survey_engine.db.session import get_db
from survey_engine.main import app
from survey_engine.models.member import Member
from survey_engine.schemas.surveys import AudienceIn, SurveyCreateIn
from survey_engine.services.aggregation import stats_cache
from survey_engine.services.audience import StaticAudienceResolver
from survey_engine.services.drafts import SurveyDraftBuilder
from survey_engine.services.publication import PublicationController

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    """SQLite en memoria compartido entre hilos (TestClient)"""
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def race_sessions(tmp_path):
    """SQLite en archivo: dos sesiones con conexiones propias para simular carreras"""
    eng = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    yield sessionmaker(bind=eng, autoflush=False)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    stats_cache.clear()
    yield session
    session.close()
    stats_cache.clear()


@pytest.fixture
def client(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    stats_cache.clear()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    stats_cache.clear()


@pytest.fixture
def admin_id():
    return uuid.uuid4()


@pytest.fixture
def member_ids():
    return [uuid.uuid4() for _ in range(3)]


def bearer(member_id, admin=False):
    claims = {"sub": str(member_id)}
    if admin:
        claims["roles"] = ["admin"]
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


@pytest.fixture
def add_members(db):
    def _add(ids, department="Ventas"):
        for i, mid in enumerate(ids):
            db.add(Member(id=mid, email=f"m{mid.hex[:8]}{i}@example.com", name=f"M{i}", department=department))
        db.commit()
    return _add


@pytest.fixture
def build_survey(db, admin_id):
    """
    Crea una encuesta en borrador.
    sections: lista de listas de (type, config, is_required).
    Devuelve (survey, [[question, ...], ...]).
    """
    def _build(sections, **meta):
        builder = SurveyDraftBuilder(db, actor_id=admin_id)
        payload = {"title": "Pulso semanal", **meta}
        survey = builder.create_survey(SurveyCreateIn(**payload))
        out = []
        for i, questions in enumerate(sections):
            section = builder.add_section(survey.id, f"Sección {i + 1}")
            created = []
            for qtype, config, required in questions:
                created.append(builder.add_question(section.id, qtype, config, is_required=required, text=f"{qtype}?"))
            out.append(created)
        return survey, out
    return _build


@pytest.fixture
def publish(db, admin_id):
    def _publish(survey, members, now=NOW):
        return PublicationController(db, actor_id=admin_id).publish(
            survey.id, StaticAudienceResolver.of(members), now=now
        )
    return _publish


def explicit(ids):
    return AudienceIn(kind="explicit", member_ids=list(ids))


def days(n):
    return timedelta(days=n)
