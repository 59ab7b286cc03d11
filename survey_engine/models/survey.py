# survey_engine/models/survey.py
import uuid

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid, func
)
from sqlalchemy.orm import relationship

from survey_engine.db.base_class import Base
from survey_engine.db.types import JSONType

# estados del ciclo de vida (lineal, sin vuelta atrás)
DRAFT = "draft"
ACTIVE = "active"
COMPLETED = "completed"
ARCHIVED = "archived"
SURVEY_STATES = (DRAFT, ACTIVE, COMPLETED, ARCHIVED)

AUDIENCE_ALL = "all"
AUDIENCE_DEPARTMENT = "department"
AUDIENCE_EXPLICIT = "explicit"


class Survey(Base):
    __tablename__ = "surveys"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    is_anonymous = Column(Boolean, nullable=False, default=False)
    is_mandatory = Column(Boolean, nullable=False, default=False)

    # selector de audiencia: all | department:X | lista explícita
    audience_kind = Column(String(20), nullable=False, default=AUDIENCE_ALL)
    audience_department = Column(String(120), nullable=True)
    audience_ids = Column(JSONType, nullable=True)

    points_awarded = Column(Integer, nullable=False, default=0)
    reminder_days = Column(Integer, nullable=False, default=0)

    open_date = Column(DateTime(timezone=True), nullable=True)
    close_date = Column(DateTime(timezone=True), nullable=True)

    state = Column(String(20), nullable=False, default=DRAFT, index=True)

    created_by = Column(Uuid, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)

    # snapshot al publicar + contador de completadas anónimas
    total_recipients = Column(Integer, nullable=False, default=0)
    anonymous_completed = Column(Integer, nullable=False, default=0)

    sections = relationship(
        "Section",
        back_populates="survey",
        order_by="Section.position",
        cascade="all, delete-orphan",
    )


class Section(Base):
    __tablename__ = "survey_sections"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid, ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    position = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("survey_id", "position", name="uq_section_position"),
    )

    survey = relationship("Survey", back_populates="sections")
    questions = relationship(
        "Question",
        back_populates="section",
        order_by="Question.position",
        cascade="all, delete-orphan",
    )


class Question(Base):
    __tablename__ = "questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid, ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True)
    section_id = Column(Uuid, ForeignKey("survey_sections.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False, default="")
    type = Column(String(30), nullable=False)  # tag del registro de tipos
    is_required = Column(Boolean, nullable=False, default=True)
    config = Column(JSONType, nullable=False, default=dict)
    position = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("section_id", "position", name="uq_question_position"),
    )

    section = relationship("Section", back_populates="questions")
