# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Job: standup scheduler.

Every tick, each active config that is due in its own timezone gets one
instance for that local date. The unique (config_id, target_date)
constraint makes duplicate ticks and replicas no-ops. Delivery runs only
for the worker whose insert succeeded; sends that fail are left pending and
retried on later ticks while the instance is still collecting.
"""
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from app.core.clock import Clock, utcnow
from app.core.config import settings
from app.core.errors import TransientError
from app.core.logging import get_logger
from app.jobs.base import tracked
from app.metrics.prometheus import INSTANCES_CREATED
from app.models.domain import (
    COLLECTING,
    DELIVERY_CHANNEL,
    ConfigSnapshot,
    StandupConfig,
    StandupInstance,
)
from app.repositories.delivery_repository import ANNOUNCEMENT, DeliveryRepository
from app.repositories.instance_repository import InstanceRepository
from app.repositories.team_repository import TeamRepository
from app.services import message_formatter
from app.services.magic_token_service import MagicTokenService
from app.services.recurrence import due_target_date

logger = get_logger(__name__)


def recipients_for(instance: StandupInstance) -> List[str]:
    snap = instance.snapshot
    recipients = [p.id for p in snap.participants]
    if snap.delivery_target == DELIVERY_CHANNEL and snap.target_channel_id:
        recipients.insert(0, ANNOUNCEMENT)
    return recipients


class StandupSchedulerJob:
    name = "scheduler"

    def __init__(
        self,
        team_repo: TeamRepository,
        instance_repo: InstanceRepository,
        delivery_repo: DeliveryRepository,
        token_service: MagicTokenService,
        messaging,
        max_attempts: int = settings.DELIVERY_MAX_ATTEMPTS,
        clock: Clock = utcnow,
    ):
        self._teams = team_repo
        self._instances = instance_repo
        self._deliveries = delivery_repo
        self._tokens = token_service
        self._messaging = messaging
        self._max_attempts = max_attempts
        self._clock = clock

    def run(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or self._clock()
        stats = {"due": 0, "created": 0, "failed": 0, "retried": 0}
        with tracked(self.name):
            stats["retried"] = self._retry_pending(now)
            for config in self._teams.list_active_configs():
                try:
                    target_date = due_target_date(config, now)
                    if target_date is None:
                        continue
                    stats["due"] += 1
                    if self._materialize(config, target_date, now):
                        stats["created"] += 1
                except Exception:
                    stats["failed"] += 1
                    logger.exception("Scheduling failed config=%s", config.id)
        if stats["created"] or stats["failed"] or stats["retried"]:
            logger.info("Scheduler tick due=%d created=%d failed=%d retried=%d",
                        stats["due"], stats["created"], stats["failed"], stats["retried"])
        return stats

    def _materialize(self, config: StandupConfig, target_date, now: datetime) -> bool:
        # Catch-up keeps a config due for the whole window; skip the insert once it exists.
        if self._instances.get_by_config_date(config.id, target_date) is not None:
            return False
        participants = config.participants()
        instance = StandupInstance(
            id=str(uuid.uuid4()),
            config_id=config.id,
            team_id=config.team_id,
            org_id=config.org_id,
            target_date=target_date,
            snapshot=ConfigSnapshot.from_config(config, participants),
            state=COLLECTING,
            created_at=now,
        )
        recipients = recipients_for(instance)
        if not self._instances.create_if_absent(instance, recipients):
            return False
        INSTANCES_CREATED.inc()
        logger.info("Standup created id=%s config=%s date=%s participants=%d",
                    instance.id, config.id, target_date, len(participants))
        for recipient in recipients:
            self._send(instance, recipient, 0, config.team_name, now)
        return True

    def _retry_pending(self, now: datetime) -> int:
        delivered = 0
        instances: Dict[str, Optional[StandupInstance]] = {}
        team_names: Dict[str, str] = {}
        for pending in self._deliveries.list_pending(self._max_attempts):
            if pending.instance_id not in instances:
                instances[pending.instance_id] = self._instances.get(pending.instance_id)
            instance = instances[pending.instance_id]
            if instance is None:
                continue
            if instance.team_id not in team_names:
                team = self._teams.get_team(instance.team_id)
                team_names[instance.team_id] = team["name"] if team else instance.snapshot.config_name
            if self._send(instance, pending.recipient, pending.attempts,
                          team_names[instance.team_id], now):
                delivered += 1
        return delivered

    def _send(self, instance: StandupInstance, recipient: str, seen_attempts: int,
              team_name: str, now: datetime) -> bool:
        if not self._deliveries.claim(instance.id, recipient, seen_attempts):
            return False
        snap = instance.snapshot
        try:
            if recipient == ANNOUNCEMENT:
                self._messaging.post_to_channel(
                    snap.target_channel_id, message_formatter.announcement(instance, team_name)
                )
            else:
                participant = instance.participant(recipient)
                if participant is None:
                    raise LookupError(f"member {recipient} is not a participant")
                link = self._tokens.issue(
                    instance.id, participant.id, participant.platform_user_id,
                    instance.org_id, ttl_hours=snap.response_window_hours,
                )
                self._messaging.post_direct(
                    participant, message_formatter.member_prompt(instance, link.submission_url)
                )
        except TransientError as exc:
            logger.warning("Delivery failed standup=%s recipient=%s attempt=%d: %s",
                           instance.id, recipient, seen_attempts + 1, exc)
            self._deliveries.mark_failed(instance.id, recipient, str(exc))
            return False
        except Exception as exc:
            logger.exception("Delivery errored standup=%s recipient=%s",
                             instance.id, recipient)
            self._deliveries.mark_failed(instance.id, recipient, str(exc))
            return False
        self._deliveries.mark_delivered(instance.id, recipient, now)
        return True
