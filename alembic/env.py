# alembic/env.py
from __future__ import annotations

import logging
import os
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import create_engine, pool

# --- Carga .env de la raíz del repo ---
ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(ROOT_DIR / ".env")

# --- Limpia variables de entorno de PG que estorban y asegura UTF-8 ---
for var in ("PGSERVICE", "PGSERVICEFILE", "PGSYSCONFDIR", "PGAPPNAME", "PGOPTIONS", "PGPASSFILE"):
    os.environ.pop(var, None)
os.environ.setdefault("PGCLIENTENCODING", "UTF8")

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

# --- URL de conexión: misma regla que la app (DATABASE_URL / SQLALCHEMY_DATABASE_URI) ---
from survey_engine.core.config import settings  # noqa: E402
from survey_engine.core.logging import mask_url  # noqa: E402

db_url = config.get_main_option("sqlalchemy.url") or settings.db_url
context.config.set_main_option("sqlalchemy.url", db_url)

# --- Metadata de todos los modelos para autogenerate ---
from survey_engine.db.base import Base  # noqa: E402

target_metadata = Base.metadata

logger.info("sqlalchemy.url = %s", mask_url(db_url))


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connect_args = {}
    if "supabase.co" in db_url or "supabase.com" in db_url:
        connect_args.setdefault("sslmode", "require")

    engine = create_engine(db_url, poolclass=pool.NullPool, connect_args=connect_args)
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
