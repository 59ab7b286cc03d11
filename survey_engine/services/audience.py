# survey_engine/services/audience.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from survey_engine.core.errors import InvalidInputError
from survey_engine.models.member import Member
from survey_engine.models.survey import AUDIENCE_ALL, AUDIENCE_DEPARTMENT, AUDIENCE_EXPLICIT, Survey


@dataclass(frozen=True)
class AudienceSelector:
    kind: str
    department: Optional[str] = None
    member_ids: tuple[UUID, ...] = ()

    @classmethod
    def from_survey(cls, survey: Survey) -> "AudienceSelector":
        return cls(
            kind=survey.audience_kind,
            department=survey.audience_department,
            member_ids=tuple(UUID(str(m)) for m in (survey.audience_ids or [])),
        )


class AudienceResolver(Protocol):
    def resolve(self, selector: AudienceSelector) -> set[UUID]:
        ...


class DirectoryAudienceResolver:
    """Resuelve contra la tabla members (espejo del directorio). Solo activos."""

    ACTIVE = "activo"

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, selector: AudienceSelector) -> set[UUID]:
        stmt = select(Member.id).where(Member.status == self.ACTIVE)
        if selector.kind == AUDIENCE_ALL:
            pass
        elif selector.kind == AUDIENCE_DEPARTMENT:
            stmt = stmt.where(Member.department == selector.department)
        elif selector.kind == AUDIENCE_EXPLICIT:
            if not selector.member_ids:
                return set()
            stmt = stmt.where(Member.id.in_(selector.member_ids))
        else:
            raise InvalidInputError(f"Selector de audiencia inválido: {selector.kind}")
        return set(self.db.scalars(stmt).all())


@dataclass
class StaticAudienceResolver:
    """Resolver en memoria (tests, scripts): member_id -> departamento."""

    members: dict[UUID, Optional[str]] = field(default_factory=dict)

    @classmethod
    def of(cls, member_ids: Iterable[UUID], department: Optional[str] = None) -> "StaticAudienceResolver":
        return cls({m: department for m in member_ids})

    def resolve(self, selector: AudienceSelector) -> set[UUID]:
        if selector.kind == AUDIENCE_ALL:
            return set(self.members)
        if selector.kind == AUDIENCE_DEPARTMENT:
            return {m for m, dept in self.members.items() if dept == selector.department}
        if selector.kind == AUDIENCE_EXPLICIT:
            return {m for m in selector.member_ids if m in self.members}
        raise InvalidInputError(f"Selector de audiencia inválido: {selector.kind}")
