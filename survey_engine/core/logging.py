# survey_engine/core/logging.py
import logging
import re

from survey_engine.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def mask_url(u: str) -> str:
    """Enmascara la contraseña en la URL para logs seguros"""
    return re.sub(r"://([^:/]+):([^@]+)@", r"://\1:***@", u)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
    # SQLAlchemy es muy ruidoso en INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
