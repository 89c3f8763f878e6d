# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Controller: magic-link submission and the internal answer read endpoint.
Thin HTTP layer: delegates ALL logic to MagicTokenService / AnswerCollectionService.
"""

from fastapi import APIRouter, Depends, Query

from app.core.dependencies import get_answer_service, get_magic_token_service, require_api_key
from app.core.errors import AuthError, ConflictError
from app.models.domain import DigestSummary
from app.schemas import (
    ErrorResponse,
    StandupInfoResponse,
    SubmitResponseRequest,
    SubmitResponseResult,
)
from app.services.answer_service import AnswerCollectionService
from app.services.magic_token_service import MagicTokenService

router = APIRouter(prefix="/api/v1/standups", tags=["Standups"])

INVALID_LINK = "This link is invalid or has expired"
LINK_ERRORS = {401: {"model": ErrorResponse}}


@router.get("/respond/{token}", response_model=StandupInfoResponse, responses=LINK_ERRORS)
def get_standup_info(
    token: str,
    tokens: MagicTokenService = Depends(get_magic_token_service),
):
    """Resolve a magic link to the standup's questions for display."""
    claims = tokens.validate(token)
    if claims is None:
        raise AuthError(INVALID_LINK)
    return tokens.get_standup_info(claims)


@router.post(
    "/respond",
    response_model=SubmitResponseResult,
    responses={**LINK_ERRORS, 400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def submit_response(
    payload: SubmitResponseRequest,
    tokens: MagicTokenService = Depends(get_magic_token_service),
    answers: AnswerCollectionService = Depends(get_answer_service),
):
    """Submit a full set of answers with a magic token."""
    claims = tokens.validate(payload.token)
    if claims is None:
        raise AuthError(INVALID_LINK)
    if tokens.has_existing_responses(claims.standup_instance_id, claims.team_member_id):
        raise ConflictError("Responses already submitted", code="already_submitted")
    count = answers.submit_full_response(
        claims.standup_instance_id, payload.answers, claims.team_member_id, claims.org_id,
    )
    return {"success": True, "answers_submitted": count}


@router.get(
    "/{instance_id}/answers",
    response_model=DigestSummary,
    dependencies=[Depends(require_api_key)],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def get_answers(
    instance_id: str,
    org_id: str = Query(..., min_length=1, description="Owning organization"),
    answers: AnswerCollectionService = Depends(get_answer_service),
):
    """Internal: answers grouped by member, with the participation summary. Requires X-API-Key."""
    return answers.get_answers(instance_id, org_id)
