# survey_engine/models/member.py
import uuid

from sqlalchemy import Column, DateTime, String, Uuid, func

from survey_engine.db.base_class import Base


class Member(Base):
    """Espejo local del directorio de empleados (lo usa el resolver de audiencia)."""

    __tablename__ = "members"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(200), nullable=True)
    department = Column(String(120), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="activo")  # activo | inactivo
    created_at = Column(DateTime(timezone=True), server_default=func.now())
