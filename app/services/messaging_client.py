# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: Slack messaging client (chat.postMessage and views.open calls).

Every failure is raised as ``TransientError`` so the calling job can count it per item and
leave the retry to its next tick. Without a bot token, calls are only
logged.
"""
from typing import Any, Dict

import httpx

from app.core.config import settings
from app.core.errors import TransientError
from app.core.logging import get_logger
from app.metrics.prometheus import MESSAGING_FAILURES
from app.models.domain import Participant

logger = get_logger(__name__)


class SlackMessagingClient:
    def __init__(
        self,
        bot_token: str = settings.SLACK_BOT_TOKEN,
        api_url: str = settings.SLACK_API_URL,
        timeout: float = settings.SLACK_TIMEOUT,
    ):
        self._token = bot_token
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout

    def post_to_channel(self, target: str, content: Dict[str, Any]) -> None:
        self._call("post_to_channel", "chat.postMessage", target, {"channel": target, **content})

    def post_direct(self, member: Participant, content: Dict[str, Any]) -> None:
        # a user id as channel opens (or reuses) the bot's DM with that user
        channel = member.platform_user_id
        self._call("post_direct", "chat.postMessage", channel, {"channel": channel, **content})

    def open_view(self, trigger_id: str, view: Dict[str, Any]) -> None:
        """Open a modal; ``trigger_id`` is only valid for a few seconds after the user action."""
        self._call("open_view", "views.open", view.get("callback_id", "view"),
                   {"trigger_id": trigger_id, "view": view})

    def _call(self, operation: str, method: str, target: str, payload: Dict[str, Any]) -> None:
        if not self._token:
            logger.info("[MOCK SLACK] %s target=%s text=%s", operation, target, payload.get("text", ""))
            return
        try:
            with httpx.Client(timeout=self._timeout) as client:
                resp = client.post(
                    f"{self._api_url}/{method}",
                    headers={"Authorization": f"Bearer {self._token}"},
                    json=payload,
                )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            MESSAGING_FAILURES.labels(operation=operation).inc()
            raise TransientError(f"Slack {operation} to {target} failed: {exc}") from exc
        if not data.get("ok"):
            MESSAGING_FAILURES.labels(operation=operation).inc()
            raise TransientError(f"Slack {operation} to {target} rejected: {data.get('error')}")
        logger.info("Slack call succeeded op=%s target=%s", operation, target)
