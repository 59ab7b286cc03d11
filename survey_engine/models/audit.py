# survey_engine/models/audit.py
import uuid

from sqlalchemy import Column, DateTime, String, Text, Uuid, func

from survey_engine.db.base_class import Base
from survey_engine.db.types import JSONType


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_id = Column(Uuid, index=True, nullable=True)
    action = Column(String, nullable=False)
    payload = Column(JSONType, nullable=True)
    ip = Column(String, nullable=True)
    ua = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)
