# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Job: close out expired standups and publish digests.

Closing decides completed or cancelled while holding the instance row, so
only one worker closes a given instance and no answer slips in between. Publishing is claimed separately through
``digest_posted_at``, which also picks up instances completed early by
answer collection. A failed post releases the claim for the next tick,
up to ``DIGEST_MAX_ATTEMPTS``.
"""
from datetime import datetime
from typing import Dict, Optional

from app.core.clock import Clock, utcnow
from app.core.config import settings
from app.core.errors import StandupError, TransientError
from app.core.logging import get_logger
from app.jobs.base import tracked
from app.metrics.prometheus import DIGESTS_POSTED
from app.models.domain import COLLECTING, StandupInstance
from app.repositories.instance_repository import InstanceRepository
from app.repositories.team_repository import TeamRepository
from app.services import message_formatter
from app.services.answer_service import AnswerCollectionService
from app.services.instance_state import InstanceStateMachine

logger = get_logger(__name__)


class StandupDigestJob:
    name = "digest"

    def __init__(
        self,
        instance_repo: InstanceRepository,
        team_repo: TeamRepository,
        state_machine: InstanceStateMachine,
        answer_service: AnswerCollectionService,
        messaging,
        max_attempts: int = settings.DIGEST_MAX_ATTEMPTS,
        clock: Clock = utcnow,
    ):
        self._instances = instance_repo
        self._teams = team_repo
        self._states = state_machine
        self._answer_service = answer_service
        self._messaging = messaging
        self._max_attempts = max_attempts
        self._clock = clock

    def run(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or self._clock()
        stats = {"closed": 0, "posted": 0, "failed": 0}
        with tracked(self.name):
            for instance in self._instances.list_by_state(COLLECTING):
                if now < instance.deadline:
                    continue
                try:
                    if self._close(instance):
                        stats["closed"] += 1
                except StandupError as exc:
                    logger.info("Close skipped standup=%s: %s", instance.id, exc)

            for instance in self._instances.list_undigested(self._max_attempts):
                try:
                    if self._publish(instance, now):
                        stats["posted"] += 1
                except Exception:
                    stats["failed"] += 1
                    logger.exception("Digest errored standup=%s", instance.id)
        return stats

    def _close(self, instance: StandupInstance) -> bool:
        return self._states.close_at_deadline(instance) is not None

    def _publish(self, instance: StandupInstance, now: datetime) -> bool:
        if not self._instances.claim_digest(instance.id, now):
            return False
        channel = instance.snapshot.target_channel_id
        if not channel:
            team = self._teams.get_team(instance.team_id) or {}
            channel = team.get("channel_id")
        if not channel:
            logger.warning("Digest has no channel standup=%s; marked posted", instance.id)
            DIGESTS_POSTED.labels(outcome="no_channel").inc()
            return False

        summary = self._answer_service.summarize(instance)
        try:
            self._messaging.post_to_channel(
                channel,
                message_formatter.digest(summary, instance.snapshot.config_name, instance.state),
            )
        except TransientError as exc:
            self._instances.release_digest(instance.id)
            logger.warning("Digest post failed standup=%s attempt=%d: %s",
                           instance.id, instance.digest_attempts + 1, exc)
            return False
        DIGESTS_POSTED.labels(outcome=instance.state).inc()
        logger.info("Digest posted standup=%s state=%s responded=%d/%d",
                    instance.id, instance.state, summary.responded, summary.total_members)
        return True
