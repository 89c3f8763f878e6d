# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: standup instance state machine.

    collecting ─► completed   (deadline passed with answers, or everyone answered)
    collecting ─► cancelled   (deadline passed with zero answers)

Terminal states have no exits. Every transition is applied as an update
guarded by the expected prior state, so concurrent workers race safely and
exactly one of them observes ``True``.
"""
from datetime import datetime
from typing import Optional

from app.core.clock import Clock, utcnow
from app.core.errors import StateError
from app.core.logging import get_logger
from app.metrics.prometheus import INSTANCE_TRANSITIONS
from app.models.domain import ALLOWED_TRANSITIONS, StandupInstance
from app.repositories.instance_repository import InstanceRepository

logger = get_logger(__name__)


class InstanceStateMachine:
    def __init__(self, instance_repo: InstanceRepository, clock: Clock = utcnow):
        self._repo = instance_repo
        self._clock = clock

    def transition(self, instance: StandupInstance, to_state: str,
                   trigger: str = "manual") -> bool:
        """Move ``instance`` to ``to_state``; False if another worker got there first."""
        allowed = ALLOWED_TRANSITIONS.get(instance.state, set())
        if to_state not in allowed:
            raise StateError(
                f"Cannot transition standup {instance.id} from '{instance.state}' to '{to_state}'"
            )
        changed = self._repo.transition(instance.id, instance.state, to_state, self._clock())
        if changed:
            INSTANCE_TRANSITIONS.labels(to_state=to_state, trigger=trigger).inc()
            logger.info("Standup transitioned id=%s from=%s to=%s trigger=%s",
                        instance.id, instance.state, to_state, trigger)
        else:
            logger.info("Standup transition lost race id=%s to=%s", instance.id, to_state)
        return changed

    def close_at_deadline(self, instance: StandupInstance) -> Optional[str]:
        """Close a collecting instance; the outcome is decided under the row lock."""
        if instance.is_terminal:
            raise StateError(f"Standup {instance.id} is already {instance.state}")
        outcome = self._repo.close_if_collecting(instance.id, self._clock())
        if outcome is None:
            logger.info("Standup close lost race id=%s", instance.id)
            return None
        INSTANCE_TRANSITIONS.labels(to_state=outcome, trigger="deadline").inc()
        logger.info("Standup transitioned id=%s from=%s to=%s trigger=deadline",
                    instance.id, instance.state, outcome)
        return outcome

    def claim_reminder(self, instance: StandupInstance,
                       now: Optional[datetime] = None) -> bool:
        """Set the reminder marker. False if already reminded; StateError once terminal."""
        if instance.is_terminal:
            raise StateError(f"Standup {instance.id} is {instance.state}; no reminders")
        if self._repo.claim_reminder(instance.id, now or self._clock()):
            return True
        current = self._repo.get(instance.id)
        if current is not None and current.is_terminal:
            raise StateError(f"Standup {instance.id} is {current.state}; no reminders")
        return False

    def release_reminder(self, instance: StandupInstance, claimed_at: datetime) -> None:
        self._repo.release_reminder(instance.id, claimed_at)
        logger.info("Reminder claim released id=%s", instance.id)
