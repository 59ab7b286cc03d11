# survey_engine/models/response.py
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid, func

from survey_engine.db.base_class import Base
from survey_engine.db.types import BigIntPK, JSONType


class Response(Base):
    __tablename__ = "survey_responses"

    # id monotónico: sirve de watermark para la agregación incremental
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    survey_id = Column(Uuid, ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Uuid, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    # NULL siempre en encuestas anónimas
    recipient_id = Column(Uuid, ForeignKey("survey_recipients.id", ondelete="CASCADE"), nullable=True, index=True)
    value = Column(JSONType, nullable=False)
    # NULL en encuestas anónimas (no correlacionable con la hora de envío)
    created_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("question_id", "recipient_id", name="uq_response_question_recipient"),
    )


class ResponseDraft(Base):
    """Progreso por sección antes de la sección final. Nunca se agrega."""

    __tablename__ = "response_drafts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid, ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True)
    section_id = Column(Uuid, ForeignKey("survey_sections.id", ondelete="CASCADE"), nullable=False)
    # "recipient:<id>" o "token:<uuid aleatorio>" (anónimas)
    owner_key = Column(String(80), nullable=False, index=True)
    answers = Column(JSONType, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("survey_id", "section_id", "owner_key", name="uq_draft_owner_section"),
    )
