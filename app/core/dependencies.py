# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
FastAPI dependency injection: wire repositories, services and jobs.
"""

from typing import Optional

from fastapi import Header

from app.core.config import settings
from app.core.database import engine
from app.core.errors import AuthError, ForbiddenError
from app.repositories.answer_repository import AnswerRepository
from app.repositories.dedup_store import build_dedup_store
from app.repositories.delivery_repository import DeliveryRepository
from app.repositories.instance_repository import InstanceRepository
from app.repositories.link_repository import LinkRepository
from app.repositories.team_repository import TeamRepository
from app.services.answer_service import AnswerCollectionService
from app.services.event_transformer import EventTransformer
from app.services.ingestion_service import WebhookIngestionService
from app.services.instance_state import InstanceStateMachine
from app.services.link_service import LinkHandler
from app.services.magic_token_service import MagicTokenService
from app.services.messaging_client import SlackMessagingClient
from app.services.signature import SignatureVerifier
from app.services.slack_response_service import SlackResponseService
from app.jobs.digest_job import StandupDigestJob
from app.jobs.reminder_job import StandupReminderJob
from app.jobs.scheduler_job import StandupSchedulerJob

# ── Singleton repositories ──
_team_repo = TeamRepository(engine)
_instance_repo = InstanceRepository(engine)
_answer_repo = AnswerRepository(engine)
_link_repo = LinkRepository(engine)
_delivery_repo = DeliveryRepository(engine)
_dedup_store = build_dedup_store(
    settings.DEDUP_BACKEND, engine, settings.DEDUP_TTL_SECONDS, settings.REDIS_URL
)
_messaging = SlackMessagingClient()

# ── Services (with injected dependencies) ──
_state_machine = InstanceStateMachine(_instance_repo)
_token_service = MagicTokenService(_instance_repo, _team_repo, _answer_repo)
_answer_service = AnswerCollectionService(
    _instance_repo, _answer_repo, _team_repo, _state_machine
)
_signature_verifier = SignatureVerifier()
_link_handler = LinkHandler(_link_repo, _team_repo)
_response_service = SlackResponseService(
    _link_handler, _team_repo, _instance_repo, _answer_service, _messaging
)
_ingestion_service = WebhookIngestionService(
    _dedup_store, EventTransformer(), _link_handler, _response_service
)

# ── Background jobs ──
_scheduler_job = StandupSchedulerJob(
    _team_repo, _instance_repo, _delivery_repo, _token_service, _messaging
)
_reminder_job = StandupReminderJob(
    _instance_repo, _answer_repo, _team_repo, _state_machine, _token_service, _messaging
)
_digest_job = StandupDigestJob(
    _instance_repo, _team_repo, _state_machine, _answer_service, _messaging
)


# ── FastAPI dependency functions ──
def get_instance_repo() -> InstanceRepository:
    return _instance_repo


def get_dedup_store():
    return _dedup_store


def get_magic_token_service() -> MagicTokenService:
    return _token_service


def get_answer_service() -> AnswerCollectionService:
    return _answer_service


def get_signature_verifier() -> SignatureVerifier:
    return _signature_verifier


def get_ingestion_service() -> WebhookIngestionService:
    return _ingestion_service


def get_jobs():
    return _scheduler_job, _reminder_job, _digest_job


def require_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")) -> str:
    """Internal endpoints only: the key must be one of ``API_KEYS``; none configured means no access."""
    if not x_api_key:
        raise AuthError("Missing API key. Provide X-API-Key header.", code="missing_api_key")
    if x_api_key not in settings.API_KEYS:
        raise ForbiddenError("Invalid API key", code="invalid_api_key")
    return x_api_key
