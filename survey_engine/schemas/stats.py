# survey_engine/schemas/stats.py
from __future__ import annotations

from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CompletionDay(BaseModel):
    date: str
    count: int


class SurveyStatsOut(BaseModel):
    survey_id: UUID
    state: str
    is_anonymous: bool
    total_recipients: int
    completed_recipients: int
    completion_rate: float
    completions_by_date: Optional[List[CompletionDay]] = None
    # question_id -> Stat (la forma depende del tipo)
    per_question: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @classmethod
    def from_stats(cls, stats: dict[str, Any]) -> "SurveyStatsOut":
        return cls(**{**stats, "per_question": {str(k): v for k, v in stats["per_question"].items()}})
