# survey_engine/core/config.py
from __future__ import annotations
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]  # raíz del repo
ENV_FILE = ROOT_DIR / ".env"

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # App
    APP_NAME: str = "Survey Engine API"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # JWT (los emite el proveedor de identidad; aquí solo se verifican)
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60

    # CORS (ej: CORS_ORIGINS=https://engage.example.com,https://admin.example.com)
    CORS_ORIGINS: str = ""

    # DB URLs (acepta cualquiera de las dos)
    DATABASE_URL: str | None = None
    SQLALCHEMY_DATABASE_URI: str | None = None

    # Clave para los recibos de encuestas anónimas (HMAC). Cambiarla invalida
    # la protección contra doble envío de las encuestas activas.
    ANONYMITY_SECRET: str = "change-me-too"

    # Decimales para promedios y tasa de completitud
    STATS_DECIMALS: int = 3

    @property
    def cors_list(self) -> list[str]:
        if not self.CORS_ORIGINS:
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def db_url(self) -> str:
        """
        URL unificada para SQLAlchemy. Acepta DATABASE_URL o SQLALCHEMY_DATABASE_URI.
        Sin ninguna de las dos usa un SQLite local (solo desarrollo).
        Fuerza sslmode=require para Supabase si faltara.
        """
        url = (self.DATABASE_URL or self.SQLALCHEMY_DATABASE_URI or "").strip()
        if not url:
            return f"sqlite:///{ROOT_DIR / 'survey_engine.db'}"
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://"):]
        if ("supabase.co" in url or "supabase.com" in url) and "sslmode=" not in url:
            sep = "&" if "?" in url else "?"
            url = f"{url}{sep}sslmode=require"
        return url

@lru_cache
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
