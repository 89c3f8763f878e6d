# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: Slack payload → CanonicalEvent.

Three inbound shapes are normalised:

* Events API ``event_callback`` envelopes (message, reaction, app events)
* interactive component payloads (``block_actions``, ``view_submission`` …)
* slash-command form submissions

Interactive payloads and commands carry no delivery id, so their dedup key
is the ``trigger_id`` Slack mints per user action, falling back to a hash
of the raw body.
"""
import hashlib
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.core.clock import Clock, utcnow
from app.core.errors import ValidationError
from app.models.domain import CanonicalEvent

SENSITIVE_KEYS = {"token", "bot_token", "access_token", "response_url", "trigger_id"}


def sanitize(payload: Any) -> Any:
    """Copy of ``payload`` with credential-bearing fields redacted, for logging."""
    if isinstance(payload, dict):
        return {
            k: "[REDACTED]" if k in SENSITIVE_KEYS else sanitize(v)
            for k, v in payload.items()
        }
    if isinstance(payload, list):
        return [sanitize(v) for v in payload]
    return payload


def _body_hash(raw_body: bytes) -> str:
    return hashlib.sha256(raw_body).hexdigest()


def _from_epoch(value: Any, fallback: datetime) -> datetime:
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return fallback


def _channel_of(event: Dict[str, Any]) -> Optional[str]:
    channel = event.get("channel")
    if isinstance(channel, dict):
        return channel.get("id")
    if channel:
        return channel
    if event.get("channel_id"):
        return event["channel_id"]
    item = event.get("item") or {}
    return item.get("channel")


class EventTransformer:
    def __init__(self, clock: Clock = utcnow):
        self._clock = clock

    def from_event_callback(self, envelope: Dict[str, Any]) -> CanonicalEvent:
        event = envelope.get("event")
        event_id = envelope.get("event_id")
        workspace_id = envelope.get("team_id")
        if not isinstance(event, dict) or not event_id or not workspace_id:
            raise ValidationError("event_callback requires event, event_id and team_id")
        user = event.get("user")
        if isinstance(user, dict):
            user = user.get("id")
        return CanonicalEvent(
            event_id=f"event:{event_id}",
            kind="event",
            event_type=event.get("type", "unknown"),
            workspace_id=workspace_id,
            user_id=user,
            channel_id=_channel_of(event),
            occurred_at=_from_epoch(envelope.get("event_time") or event.get("event_ts"), self._clock()),
            text=event.get("text"),
            payload=event,
        )

    def from_interactive(self, payload: Dict[str, Any], raw_body: bytes) -> CanonicalEvent:
        team = payload.get("team") or {}
        workspace_id = team.get("id") if isinstance(team, dict) else None
        if not payload.get("type") or not workspace_id:
            raise ValidationError("interactive payload requires type and team.id")
        user = payload.get("user") or {}
        actions = payload.get("actions") or []
        dedup_key = payload.get("trigger_id") or _body_hash(raw_body)
        return CanonicalEvent(
            event_id=f"interactive:{dedup_key}",
            kind="interactive",
            event_type=f"interactive.{payload['type']}",
            workspace_id=workspace_id,
            user_id=user.get("id") if isinstance(user, dict) else None,
            channel_id=_channel_of(payload),
            occurred_at=_from_epoch(actions[0].get("action_ts") if actions else None, self._clock()),
            action_ids=[a.get("action_id") for a in actions if a.get("action_id")],
            payload=payload,
        )

    def from_command(self, form: Dict[str, str], raw_body: bytes) -> CanonicalEvent:
        if not form.get("command") or not form.get("team_id"):
            raise ValidationError("slash command requires command and team_id")
        dedup_key = form.get("trigger_id") or _body_hash(raw_body)
        return CanonicalEvent(
            event_id=f"command:{dedup_key}",
            kind="command",
            event_type="command",
            workspace_id=form["team_id"],
            user_id=form.get("user_id"),
            channel_id=form.get("channel_id"),
            occurred_at=self._clock(),
            command=form["command"],
            text=(form.get("text") or "").strip(),
            payload=dict(form),
        )
