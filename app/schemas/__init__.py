# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Request / Response schemas: API contract definitions.
These are Pydantic models used ONLY at the controller (HTTP) boundary.
"""
from typing import Optional

from pydantic import BaseModel, Field

from app.models.domain import AnswerInput


class SubmitResponseRequest(BaseModel):
    token: str = Field(..., min_length=1, description="Magic token from the submission link")
    answers: list[AnswerInput] = Field(..., min_length=1, description="One entry per question")


class SubmitResponseResult(BaseModel):
    success: bool
    answers_submitted: int


class StandupInfoResponse(BaseModel):
    instance: dict
    team: dict
    member: dict
    questions: list[str]
    has_existing_responses: bool


class ErrorResponse(BaseModel):
    error: str
    detail: str
    request_id: Optional[str] = None
