# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Job: pre-deadline reminders.

An instance is reminded once, inside [deadline - reminder_minutes, deadline).
The ``reminder_sent_at`` marker is claimed before sending, so concurrent
workers never double-remind. If every send fails the claim is released and
the next tick tries again.
"""
from datetime import datetime
from typing import Dict, Optional

from app.core.clock import Clock, utcnow
from app.core.errors import StateError, TransientError
from app.core.logging import get_logger
from app.jobs.base import tracked
from app.metrics.prometheus import REMINDERS_SENT
from app.models.domain import COLLECTING, StandupInstance
from app.repositories.answer_repository import AnswerRepository
from app.repositories.instance_repository import InstanceRepository
from app.repositories.team_repository import TeamRepository
from app.services import message_formatter
from app.services.instance_state import InstanceStateMachine
from app.services.magic_token_service import MagicTokenService

logger = get_logger(__name__)


def in_reminder_window(instance: StandupInstance, now: datetime) -> bool:
    return instance.reminder_at <= now < instance.deadline


class StandupReminderJob:
    name = "reminder"

    def __init__(
        self,
        instance_repo: InstanceRepository,
        answer_repo: AnswerRepository,
        team_repo: TeamRepository,
        state_machine: InstanceStateMachine,
        token_service: MagicTokenService,
        messaging,
        clock: Clock = utcnow,
    ):
        self._instances = instance_repo
        self._answers = answer_repo
        self._teams = team_repo
        self._states = state_machine
        self._tokens = token_service
        self._messaging = messaging
        self._clock = clock

    def run(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or self._clock()
        stats = {"instances": 0, "sent": 0, "failed": 0}
        with tracked(self.name):
            for instance in self._instances.list_by_state(COLLECTING):
                if instance.reminder_sent_at is not None or not in_reminder_window(instance, now):
                    continue
                try:
                    sent, failed = self._remind(instance, now)
                except StateError as exc:
                    logger.info("Reminder skipped standup=%s: %s", instance.id, exc)
                    continue
                except Exception:
                    logger.exception("Reminder errored standup=%s", instance.id)
                    stats["failed"] += 1
                    continue
                stats["instances"] += 1
                stats["sent"] += sent
                stats["failed"] += failed
        return stats

    def _remind(self, instance: StandupInstance, now: datetime):
        if not self._states.claim_reminder(instance, now):
            return 0, 0
        active = self._teams.active_member_ids(instance.team_id)
        sent = failed = 0
        for participant in instance.snapshot.participants:
            if participant.id not in active:
                continue
            # re-read per member: an answer may have landed since the tick started
            if self._answers.has_any(instance.id, participant.id):
                continue
            try:
                link = self._tokens.issue(
                    instance.id, participant.id, participant.platform_user_id,
                    instance.org_id,
                    ttl_hours=instance.snapshot.response_window_hours,
                )
                self._messaging.post_direct(
                    participant, message_formatter.reminder(instance, link.submission_url)
                )
                sent += 1
                REMINDERS_SENT.inc()
            except TransientError as exc:
                failed += 1
                logger.warning("Reminder failed standup=%s member=%s: %s",
                               instance.id, participant.id, exc)
        if failed and not sent:
            self._states.release_reminder(instance, now)
        logger.info("Reminders processed standup=%s sent=%d failed=%d",
                    instance.id, sent, failed)
        return sent, failed
