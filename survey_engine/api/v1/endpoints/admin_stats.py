# survey_engine/api/v1/endpoints/admin_stats.py
from io import BytesIO
from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from survey_engine.api.deps.admin import require_admin
from survey_engine.core.security import Identity
from survey_engine.db.session import get_db
from survey_engine.schemas.responses import RawResponseOut
from survey_engine.schemas.stats import SurveyStatsOut
from survey_engine.services.aggregation import AggregationEngine
from survey_engine.services.common import ensure_survey
from survey_engine.services.reports import XLSX_MEDIA_TYPE, stats_csv, stats_workbook

router = APIRouter(prefix="/surveys", tags=["admin-reports"])


@router.get("/{survey_id}/stats", response_model=SurveyStatsOut)
def survey_stats(
    survey_id: UUID,
    full: bool = Query(False, description="Ignora el cache y recalcula desde cero"),
    db: Session = Depends(get_db),
    _admin: Identity = Depends(require_admin),
):
    stats = AggregationEngine(db).compute_survey_stats(survey_id, incremental=not full)
    return SurveyStatsOut.from_stats(stats)


@router.get("/{survey_id}/questions/{question_id}/stats")
def question_stats(
    survey_id: UUID,
    question_id: UUID,
    db: Session = Depends(get_db),
    _admin: Identity = Depends(require_admin),
) -> dict[str, Any]:
    return AggregationEngine(db).question_stats(survey_id, question_id)


@router.get("/{survey_id}/questions/{question_id}/responses", response_model=List[RawResponseOut])
def raw_responses(
    survey_id: UUID,
    question_id: UUID,
    db: Session = Depends(get_db),
    _admin: Identity = Depends(require_admin),
):
    return AggregationEngine(db).raw_responses(survey_id, question_id)


# ---------- Exportes ----------

@router.get("/{survey_id}/exports/stats.xlsx")
def export_stats_xlsx(survey_id: UUID, db: Session = Depends(get_db), _admin: Identity = Depends(require_admin)):
    survey = ensure_survey(db, survey_id)
    engine = AggregationEngine(db)
    stats = engine.compute_survey_stats(survey_id)
    content = stats_workbook(survey, engine.questions(survey_id), stats)
    filename = f"survey_{survey_id}_stats.xlsx"
    return StreamingResponse(
        BytesIO(content),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{survey_id}/exports/questions.csv")
def export_questions_csv(survey_id: UUID, db: Session = Depends(get_db), _admin: Identity = Depends(require_admin)):
    engine = AggregationEngine(db)
    stats = engine.compute_survey_stats(survey_id)
    filename = f"survey_{survey_id}_questions.csv"
    return StreamingResponse(
        stats_csv(engine.questions(survey_id), stats),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
