# survey_engine/models/recipient.py
import uuid

from sqlalchemy import (
    Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid, func
)

from survey_engine.db.base_class import Base

PENDING = "pending"
COMPLETED = "completed"


class Recipient(Base):
    """Snapshot de la audiencia al publicar. Solo cambia su status."""

    __tablename__ = "survey_recipients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid, ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True)
    member_id = Column(Uuid, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=PENDING, index=True)  # pending | completed
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("survey_id", "member_id", name="uq_recipient_survey_member"),
    )


class AnonymousReceipt(Base):
    """
    Marca de "ya envió" en encuestas anónimas: HMAC(survey, member).
    Sin timestamp ni referencia a respuestas o borradores.
    """

    __tablename__ = "anonymous_receipts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid, ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True)
    digest = Column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint("survey_id", "digest", name="uq_receipt_survey_digest"),
    )


class CompletionEvent(Base):
    """Outbox para el ledger de puntos: un hecho "survey completed" por miembro."""

    __tablename__ = "completion_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid, ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True)
    member_id = Column(Uuid, nullable=False)
    points = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=True)  # NULL en encuestas anónimas
    delivered_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        UniqueConstraint("survey_id", "member_id", name="uq_completion_survey_member"),
    )
