# survey_engine/db/base.py
from survey_engine.db.base_class import Base  # noqa: F401

# Importa todos los modelos que definen tablas para que queden en Base.metadata
# (lo usan Alembic y los tests).
from survey_engine.models import survey  # noqa: F401
from survey_engine.models import recipient  # noqa: F401
from survey_engine.models import response  # noqa: F401
from survey_engine.models import member  # noqa: F401
from survey_engine.models import audit  # noqa: F401
from survey_engine.models import template  # noqa: F401
