# survey_engine/api/deps/audience.py
from fastapi import Depends
from sqlalchemy.orm import Session

from survey_engine.db.session import get_db
from survey_engine.services.audience import AudienceResolver, DirectoryAudienceResolver


def get_audience_resolver(db: Session = Depends(get_db)) -> AudienceResolver:
    return DirectoryAudienceResolver(db)
