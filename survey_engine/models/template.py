import uuid

from sqlalchemy import Column, DateTime, String, Text, Uuid, func

from survey_engine.db.base_class import Base
from survey_engine.db.types import JSONType


class SurveyTemplate(Base):
    __tablename__ = "survey_templates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=True, index=True)  # employee | customer | registration ...
    # {"sections": [{"title", "description", "questions": [{"type", "text", "is_required", "config"}]}]}
    structure = Column(JSONType, nullable=False, default=dict)

    created_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
