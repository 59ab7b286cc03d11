# survey_engine/api/v1/endpoints/admin_surveys.py
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from survey_engine.api.deps.admin import require_admin
from survey_engine.api.deps.audience import get_audience_resolver
from survey_engine.core.errors import InvalidInputError
from survey_engine.core.security import Identity
from survey_engine.db.session import get_db
from survey_engine.models.survey import SURVEY_STATES, Survey
from survey_engine.schemas.surveys import (
    PublishOut, QuestionCreateIn, QuestionOut, QuestionTypeOut, ReorderIn,
    SectionCreateIn, SectionOut, SurveyCreateIn, SurveyFromTemplateIn, SurveyOut, SurveyTreeOut,
    SurveyUpdateIn, TemplateCreateIn, TemplateOut, TemplateUpdateIn,
)
from survey_engine.services.audience import AudienceResolver
from survey_engine.services.drafts import SurveyDraftBuilder
from survey_engine.services.publication import PublicationController
from survey_engine.services.question_types import registry
from survey_engine.services.templates import TemplateService

router = APIRouter(prefix="/surveys", tags=["admin-surveys"])


def get_builder(
    request: Request,
    db: Session = Depends(get_db),
    admin: Identity = Depends(require_admin),
) -> SurveyDraftBuilder:
    return SurveyDraftBuilder(db, actor_id=admin.member_id, request=request)


def get_controller(
    request: Request,
    db: Session = Depends(get_db),
    admin: Identity = Depends(require_admin),
) -> PublicationController:
    return PublicationController(db, actor_id=admin.member_id, request=request)


def get_templates(
    request: Request,
    db: Session = Depends(get_db),
    admin: Identity = Depends(require_admin),
) -> TemplateService:
    return TemplateService(db, actor_id=admin.member_id, request=request)


@router.get("/question-types", response_model=List[QuestionTypeOut])
def list_question_types(_admin: Identity = Depends(require_admin)):
    return registry.list_types()


# ---------- Plantillas ----------

@router.get("/templates", response_model=List[TemplateOut])
def list_templates(
    category: Optional[str] = Query(None),
    templates: TemplateService = Depends(get_templates),
):
    return templates.list_templates(category)


@router.post("/templates", response_model=TemplateOut, status_code=status.HTTP_201_CREATED)
def create_template(payload: TemplateCreateIn, templates: TemplateService = Depends(get_templates)):
    return templates.create_template(payload)


@router.get("/templates/{template_id}", response_model=TemplateOut)
def get_template(template_id: UUID, templates: TemplateService = Depends(get_templates)):
    return templates.get_template(template_id)


@router.put("/templates/{template_id}", response_model=TemplateOut)
def update_template(
    template_id: UUID,
    payload: TemplateUpdateIn,
    templates: TemplateService = Depends(get_templates),
):
    return templates.update_template(template_id, payload)


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template(template_id: UUID, templates: TemplateService = Depends(get_templates)):
    templates.delete_template(template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/templates/{template_id}/surveys", response_model=SurveyTreeOut, status_code=status.HTTP_201_CREATED)
def create_survey_from_template(
    template_id: UUID,
    payload: Optional[SurveyFromTemplateIn] = None,
    builder: SurveyDraftBuilder = Depends(get_builder),
):
    return builder.create_from_template(template_id, payload)


# ---------- Encuestas ----------

@router.get("", response_model=List[SurveyOut])
def list_surveys(
    state: Optional[str] = Query(None, description="draft | active | completed | archived"),
    db: Session = Depends(get_db),
    _admin: Identity = Depends(require_admin),
):
    stmt = select(Survey).order_by(Survey.created_at.desc())
    if state:
        if state not in SURVEY_STATES:
            raise InvalidInputError(f"Estado desconocido: {state}")
        stmt = stmt.where(Survey.state == state)
    return db.scalars(stmt).all()


@router.post("", response_model=SurveyOut, status_code=status.HTTP_201_CREATED)
def create_survey(
    payload: SurveyCreateIn,
    builder: SurveyDraftBuilder = Depends(get_builder),
):
    return builder.create_survey(payload)


@router.get("/{survey_id}", response_model=SurveyTreeOut)
def get_survey(survey_id: UUID, builder: SurveyDraftBuilder = Depends(get_builder)):
    return builder.get_survey_tree(survey_id)


@router.patch("/{survey_id}", response_model=SurveyOut)
def update_survey(
    survey_id: UUID,
    payload: SurveyUpdateIn,
    builder: SurveyDraftBuilder = Depends(get_builder),
):
    return builder.update_survey(survey_id, payload)


@router.delete("/{survey_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_survey(survey_id: UUID, builder: SurveyDraftBuilder = Depends(get_builder)):
    builder.delete_survey(survey_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Secciones ----------

@router.post("/{survey_id}/sections", response_model=SectionOut, status_code=status.HTTP_201_CREATED)
def add_section(
    survey_id: UUID,
    payload: SectionCreateIn,
    builder: SurveyDraftBuilder = Depends(get_builder),
):
    return builder.add_section(survey_id, payload.title, payload.description)


@router.put("/{survey_id}/sections/order", response_model=List[SectionOut])
def reorder_sections(
    survey_id: UUID,
    payload: ReorderIn,
    builder: SurveyDraftBuilder = Depends(get_builder),
):
    return builder.reorder_sections(survey_id, payload.ids)


@router.delete("/sections/{section_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_section(section_id: UUID, builder: SurveyDraftBuilder = Depends(get_builder)):
    builder.remove_section(section_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Preguntas ----------

@router.post("/sections/{section_id}/questions", response_model=QuestionOut, status_code=status.HTTP_201_CREATED)
def add_question(
    section_id: UUID,
    payload: QuestionCreateIn,
    builder: SurveyDraftBuilder = Depends(get_builder),
):
    return builder.add_question(
        section_id, payload.type, payload.config, is_required=payload.is_required, text=payload.text
    )


@router.put("/sections/{section_id}/questions/order", response_model=List[QuestionOut])
def reorder_questions(
    section_id: UUID,
    payload: ReorderIn,
    builder: SurveyDraftBuilder = Depends(get_builder),
):
    return builder.reorder_questions(section_id, payload.ids)


@router.delete("/questions/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_question(question_id: UUID, builder: SurveyDraftBuilder = Depends(get_builder)):
    builder.remove_question(question_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Ciclo de vida ----------

@router.post("/{survey_id}/publish", response_model=PublishOut)
def publish_survey(
    survey_id: UUID,
    controller: PublicationController = Depends(get_controller),
    resolver: AudienceResolver = Depends(get_audience_resolver),
):
    survey = controller.publish(survey_id, resolver)
    return PublishOut(survey_id=survey.id, state=survey.state, total_recipients=survey.total_recipients)


@router.post("/{survey_id}/complete", response_model=SurveyOut)
def complete_survey(survey_id: UUID, controller: PublicationController = Depends(get_controller)):
    return controller.complete(survey_id)


@router.post("/{survey_id}/archive", response_model=SurveyOut)
def archive_survey(survey_id: UUID, controller: PublicationController = Depends(get_controller)):
    return controller.archive(survey_id)
