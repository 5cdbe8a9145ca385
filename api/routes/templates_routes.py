"""Certificate template endpoints."""

from typing import Any

from fastapi import APIRouter, Body, HTTPException

from core.database import DbSession
from rendering.validation import TemplateValidationError, validate_template
from repositories.template_repository import TemplateRepository
from schemas import (
    TemplateIssueResponse,
    TemplateResponse,
    TemplateValidationResponse,
)

router = APIRouter(prefix="/api/templates", tags=["templates"])


def _issues(e: TemplateValidationError) -> list[TemplateIssueResponse]:
    return [
        TemplateIssueResponse(
            index=issue.index, element_id=issue.element_id, message=issue.message
        )
        for issue in e.issues
    ]


@router.post("/validate", response_model=TemplateValidationResponse)
async def validate_template_endpoint(
    definition: dict[str, Any] = Body(...),
) -> TemplateValidationResponse:
    """Check a template definition without storing it.

    Always returns 200; ``is_valid`` and ``issues`` carry the verdict.
    """
    try:
        template = validate_template(definition)
    except TemplateValidationError as e:
        return TemplateValidationResponse(is_valid=False, issues=_issues(e))
    return TemplateValidationResponse(is_valid=True, template=template)


@router.post(
    "",
    response_model=TemplateResponse,
    status_code=201,
    responses={422: {"description": "Template definition is invalid"}},
)
async def create_template_endpoint(
    db: DbSession,
    definition: dict[str, Any] = Body(...),
) -> TemplateResponse:
    """Validate and store a template definition."""
    try:
        template = validate_template(definition)
    except TemplateValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={
                "message": str(e),
                "issues": [issue.model_dump() for issue in _issues(e)],
            },
        ) from e

    row = await TemplateRepository(db).create(
        name=template.name,
        description=template.description,
        definition=template.model_dump(mode="json", by_alias=True),
    )
    return TemplateResponse(
        id=row.id,
        name=row.name,
        description=row.description,
        definition=template,
        created_at=row.created_at,
    )


@router.get(
    "/{template_id}",
    response_model=TemplateResponse,
    responses={404: {"description": "Template not found"}},
)
async def get_template_endpoint(template_id: str, db: DbSession) -> TemplateResponse:
    row = await TemplateRepository(db).get_by_id(template_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Template {template_id} not found")
    return TemplateResponse(
        id=row.id,
        name=row.name,
        description=row.description,
        definition=row.definition,
        created_at=row.created_at,
    )
