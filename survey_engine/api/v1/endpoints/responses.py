# survey_engine/api/v1/endpoints/responses.py
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from survey_engine.core.errors import NotFoundError
from survey_engine.core.security import Identity, get_current_identity
from survey_engine.db.session import get_db
from survey_engine.models.recipient import Recipient
from survey_engine.models.survey import ACTIVE, COMPLETED
from survey_engine.schemas.responses import (
    DraftsOut, MySurveyOut, PendingCountOut, SectionSubmitIn, SectionSubmitOut,
)
from survey_engine.schemas.surveys import SurveyTreeOut
from survey_engine.services.collector import Answer, ResponseCollector
from survey_engine.services.common import ensure_survey

router = APIRouter(prefix="/surveys", tags=["surveys"])


@router.get("/mine", response_model=List[MySurveyOut])
def my_surveys(db: Session = Depends(get_db), me: Identity = Depends(get_current_identity)):
    return ResponseCollector(db).list_my_surveys(me.member_id)


@router.get("/notifications/count", response_model=PendingCountOut)
def pending_count(db: Session = Depends(get_db), me: Identity = Depends(get_current_identity)):
    return PendingCountOut(count=ResponseCollector(db).pending_count(me.member_id))


@router.get("/{survey_id}", response_model=SurveyTreeOut)
def get_survey_for_respondent(
    survey_id: UUID,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    survey = ensure_survey(db, survey_id)
    is_recipient = db.scalar(
        select(Recipient.id).where(Recipient.survey_id == survey_id, Recipient.member_id == me.member_id)
    )
    # los no destinatarios no ven ni la existencia de la encuesta
    if survey.state not in (ACTIVE, COMPLETED) or not is_recipient:
        raise NotFoundError("Encuesta no encontrada")
    return survey


@router.post("/{survey_id}/sections/{section_id}/submit", response_model=SectionSubmitOut)
def submit_section(
    survey_id: UUID,
    section_id: UUID,
    payload: SectionSubmitIn,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    result = ResponseCollector(db).submit_section(
        survey_id,
        me.member_id,
        section_id,
        [Answer(question_id=a.question_id, value=a.value) for a in payload.answers],
        draft_token=payload.draft_token,
    )
    if not result.ok:
        body = SectionSubmitOut(
            ok=False,
            draft_token=result.draft_token,
            errors=[{"question_id": e.question_id, "code": e.code, "message": e.message} for e in result.errors],
        )
        return JSONResponse(status_code=422, content=body.model_dump(mode="json"))
    return SectionSubmitOut(ok=True, completed=result.completed, draft_token=result.draft_token)


@router.get("/{survey_id}/drafts", response_model=DraftsOut)
def my_drafts(
    survey_id: UUID,
    draft_token: Optional[UUID] = Query(None),
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    drafts = ResponseCollector(db).load_drafts(survey_id, me.member_id, draft_token)
    return DraftsOut(
        survey_id=survey_id,
        sections={str(sid): {str(qid): v for qid, v in answers.items()} for sid, answers in drafts.items()},
    )
