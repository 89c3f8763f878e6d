# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Controller: Slack webhooks (Events API, interactivity, slash commands).
Thin HTTP layer: verifies the signature over the raw body, then delegates
ALL logic to WebhookIngestionService.
"""
import json
from typing import Dict
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from app.core.dependencies import get_ingestion_service, get_signature_verifier
from app.core.errors import AuthError, ValidationError
from app.services.ingestion_service import WebhookIngestionService
from app.services.signature import SignatureVerifier

router = APIRouter(prefix="/slack", tags=["Slack"])


async def _verified_body(request: Request, verifier: SignatureVerifier) -> bytes:
    body = await request.body()
    if not verifier.verify(
        body,
        request.headers.get("X-Slack-Request-Timestamp"),
        request.headers.get("X-Slack-Signature"),
    ):
        raise AuthError("Invalid request signature", code="invalid_signature")
    return body


def _parse_form(body: bytes) -> Dict[str, str]:
    try:
        return {k: v[0] for k, v in parse_qs(body.decode("utf-8")).items()}
    except UnicodeDecodeError as exc:
        raise ValidationError("Form body is not valid UTF-8") from exc


@router.post("/events")
async def slack_events(
    request: Request,
    verifier: SignatureVerifier = Depends(get_signature_verifier),
    ingestion: WebhookIngestionService = Depends(get_ingestion_service),
):
    body = await _verified_body(request, verifier)
    try:
        envelope = json.loads(body)
    except ValueError as exc:
        raise ValidationError("Event body is not valid JSON") from exc
    if not isinstance(envelope, dict):
        raise ValidationError("Event body must be a JSON object")
    if envelope.get("type") == "url_verification":
        return {"challenge": envelope.get("challenge", "")}
    await run_in_threadpool(ingestion.handle_event_callback, envelope)
    return PlainTextResponse("OK")


@router.post("/interactive")
async def slack_interactive(
    request: Request,
    verifier: SignatureVerifier = Depends(get_signature_verifier),
    ingestion: WebhookIngestionService = Depends(get_ingestion_service),
):
    body = await _verified_body(request, verifier)
    await run_in_threadpool(ingestion.handle_interactive, _parse_form(body), body)
    # an empty 200 is what closes a submitted modal
    return Response(status_code=200)


@router.post("/commands")
async def slack_commands(
    request: Request,
    verifier: SignatureVerifier = Depends(get_signature_verifier),
    ingestion: WebhookIngestionService = Depends(get_ingestion_service),
):
    body = await _verified_body(request, verifier)
    return await run_in_threadpool(ingestion.handle_command, _parse_form(body), body)
