#!/usr/bin/env python3
"""Carga las plantillas de fábrica (eNPS, compromiso) que todavía no existan."""
import logging
import sys

from survey_engine.core.logging import configure_logging
from survey_engine.db.session import SessionLocal
from survey_engine.services.templates import seed_builtin_templates

logger = logging.getLogger("seed_templates")


def main() -> int:
    configure_logging()
    with SessionLocal() as db:
        created = seed_builtin_templates(db)
    logger.info("Plantillas creadas: %d", created)
    return 0


if __name__ == "__main__":
    sys.exit(main())
