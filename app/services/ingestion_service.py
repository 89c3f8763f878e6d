# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: webhook ingestion pipeline (after signature verification).

    dedup (atomic check-and-insert) ─► transform ─► route

A delivery whose id was already recorded is dropped without running any
handler. Handler failures are logged and counted but never surfaced to
Slack, which would otherwise retry them. When the dedup store itself is
down, nothing runs and a slash command is told to try again.
"""
import json
from typing import Any, Callable, Dict, Optional

from app.core.errors import StandupError, ValidationError
from app.core.logging import get_logger
from app.metrics.prometheus import DUPLICATE_EVENTS, WEBHOOK_EVENTS
from app.models.domain import CanonicalEvent, Linked
from app.services.event_transformer import EventTransformer, sanitize
from app.services.link_service import LinkHandler
from app.services.slack_response_service import SlackResponseService

logger = get_logger(__name__)

UNLINK_EVENTS = {"app_uninstalled", "tokens_revoked"}

COMMAND_HELP = (
    "Usage:\n"
    "• `connect <organization-id>` link this workspace to your organization\n"
    "• `disconnect` unlink this workspace\n"
    "• `status` show the current connection\n"
    "• `submit` answer your latest open standup"
)
RETRY_LATER = "Could not process this command right now; please try again in a moment."


def ephemeral(text: str) -> Dict[str, str]:
    return {"response_type": "ephemeral", "text": text}


class WebhookIngestionService:
    def __init__(self, dedup_store, transformer: EventTransformer, link_handler: LinkHandler,
                 responses: Optional[SlackResponseService] = None):
        self._dedup = dedup_store
        self._transformer = transformer
        self._links = link_handler
        self._responses = responses
        self._event_handlers: Dict[str, Callable[[CanonicalEvent], None]] = {
            name: self._handle_uninstall for name in UNLINK_EVENTS
        }
        if responses is not None:
            self._event_handlers.update({
                "message": responses.handle_direct_message,
                "interactive.block_actions": responses.handle_block_actions,
                "interactive.view_submission": responses.handle_view_submission,
            })

    # ── Entry points (one per inbound shape) ──

    def handle_event_callback(self, envelope: Dict[str, Any]) -> None:
        if envelope.get("type") != "event_callback":
            raise ValidationError(f"Unsupported event envelope type {envelope.get('type')!r}")
        self._ingest(self._transformer.from_event_callback(envelope))

    def handle_interactive(self, form: Dict[str, str], raw_body: bytes) -> None:
        try:
            payload = json.loads(form.get("payload") or "")
        except ValueError as exc:
            raise ValidationError("Interactive payload is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ValidationError("Interactive payload must be an object")
        self._ingest(self._transformer.from_interactive(payload, raw_body))

    def handle_command(self, form: Dict[str, str], raw_body: bytes) -> Dict[str, str]:
        reply = self._ingest(self._transformer.from_command(form, raw_body))
        return reply or ephemeral("Already handled.")

    # ── Pipeline ──

    def _ingest(self, event: CanonicalEvent) -> Optional[Dict[str, str]]:
        try:
            first = self._dedup.check_and_insert(event.event_id)
        except Exception:
            # unknown delivery status: skip rather than risk a second execution
            logger.exception("Dedup store unavailable event=%s; skipping", event.event_id)
            WEBHOOK_EVENTS.labels(kind=event.kind, outcome="dedup_error").inc()
            return ephemeral(RETRY_LATER) if event.kind == "command" else None
        if not first:
            DUPLICATE_EVENTS.labels(kind=event.kind).inc()
            logger.info("Duplicate delivery dropped event=%s", event.event_id)
            return None

        logger.debug("Webhook event payload=%s", json.dumps(sanitize(event.payload), default=str))
        try:
            reply = self._route(event)
        except StandupError as exc:
            WEBHOOK_EVENTS.labels(kind=event.kind, outcome="rejected").inc()
            logger.info("Webhook event rejected event=%s: %s", event.event_id, exc.message)
            return ephemeral(exc.message) if event.kind == "command" else None
        except Exception:
            WEBHOOK_EVENTS.labels(kind=event.kind, outcome="error").inc()
            logger.exception("Webhook handler failed event=%s type=%s",
                             event.event_id, event.event_type)
            return ephemeral("Something went wrong; please try again.") if event.kind == "command" else None
        return reply

    def _route(self, event: CanonicalEvent) -> Optional[Dict[str, str]]:
        if event.kind == "command":
            reply = self._handle_command(event)
            WEBHOOK_EVENTS.labels(kind=event.kind, outcome="processed").inc()
            return reply

        if not self._links.is_linked(event.workspace_id):
            WEBHOOK_EVENTS.labels(kind=event.kind, outcome="unlinked").inc()
            logger.info("Event from unconnected workspace ignored workspace=%s type=%s",
                        event.workspace_id, event.event_type)
            return None

        handler = self._event_handlers.get(event.event_type)
        if handler:
            handler(event)
        else:
            logger.info("Webhook event received type=%s workspace=%s user=%s channel=%s",
                        event.event_type, event.workspace_id, event.user_id, event.channel_id)
        WEBHOOK_EVENTS.labels(kind=event.kind, outcome="processed").inc()
        return None

    # ── Handlers ──

    def _handle_uninstall(self, event: CanonicalEvent) -> None:
        self._links.unlink(event.workspace_id)

    def _handle_command(self, event: CanonicalEvent) -> Dict[str, str]:
        parts = (event.text or "").split()
        sub = parts[0].lower() if parts else "help"

        if sub == "connect":
            if len(parts) < 2:
                return ephemeral("Please provide an organization id: `connect <organization-id>`")
            state = self._links.link(event.workspace_id, parts[1])
            return ephemeral(f"This workspace is connected to organization `{state.org_id}`.")
        if sub == "disconnect":
            self._links.unlink(event.workspace_id)
            return ephemeral("This workspace is now disconnected.")
        if sub == "status":
            state = self._links.status(event.workspace_id)
            if isinstance(state, Linked):
                return ephemeral(f"Connected to organization `{state.org_id}`.")
            return ephemeral("This workspace is not connected to any organization.")
        if sub == "submit" and self._responses is not None:
            return ephemeral(self._responses.open_modal_for_command(event))
        return ephemeral(COMMAND_HELP)
