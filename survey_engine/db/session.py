# survey_engine/db/session.py
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from survey_engine.core.config import settings
from survey_engine.core.logging import mask_url

logger = logging.getLogger(__name__)

db_url = settings.db_url
logger.info("[DB] Using: %s", mask_url(db_url))


def build_engine(url: str):
    if url.startswith("sqlite"):
        # SQLite local: una conexión por hilo no aplica con el TestClient
        return create_engine(url, connect_args={"check_same_thread": False}, echo=False)
    return create_engine(
        url,
        pool_size=5,              # 5 conexiones concurrentes
        max_overflow=10,          # Hasta 15 total en picos
        pool_timeout=30,          # 30s para obtener conexión
        pool_recycle=1800,        # Recicla cada 30 min
        pool_pre_ping=True,       # Verifica que la conexión esté viva
        echo=False,
    )


engine = build_engine(db_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency para FastAPI"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_connection() -> bool:
    """Verifica que la conexión funcione"""
    try:
        with engine.connect() as conn:
            row = conn.execute(text("SELECT 1")).fetchone()
            return bool(row and row[0] == 1)
    except Exception:
        logger.exception("[DB] Connection failed")
        return False
