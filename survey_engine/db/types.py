# survey_engine/db/types.py
from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB

# JSONB en Postgres, JSON genérico en SQLite (tests / desarrollo local)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite solo autoincrementa INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")
