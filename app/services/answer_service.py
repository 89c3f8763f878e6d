# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: answer collection.

One-shot submission per member per instance. The guarded insert in
AnswerRepository.insert_all is the final word on both double submission
and late submission; the checks here exist to return a precise reason
before touching storage.
"""
from typing import Dict, List, Sequence

from app.core.clock import Clock, utcnow
from app.core.errors import ConflictError, NotFoundError, StateError, ValidationError
from app.core.logging import get_logger
from app.metrics.prometheus import ANSWERS_SUBMITTED
from app.models.domain import (
    COLLECTING,
    COMPLETED,
    AnswerInput,
    AnswerRecord,
    DigestSummary,
    MemberStatus,
    StandupInstance,
)
from app.repositories.answer_repository import AnswerRepository
from app.repositories.instance_repository import InstanceRepository
from app.repositories.team_repository import TeamRepository
from app.services.instance_state import InstanceStateMachine

logger = get_logger(__name__)


class AnswerCollectionService:
    def __init__(
        self,
        instance_repo: InstanceRepository,
        answer_repo: AnswerRepository,
        team_repo: TeamRepository,
        state_machine: InstanceStateMachine,
        clock: Clock = utcnow,
    ):
        self._instances = instance_repo
        self._answers = answer_repo
        self._teams = team_repo
        self._states = state_machine
        self._clock = clock

    def submit_full_response(self, instance_id: str, answers: Sequence[AnswerInput],
                             member_id: str, org_id: str) -> int:
        instance = self._instances.get_for_org(instance_id, org_id)
        if instance is None:
            raise NotFoundError(f"Standup {instance_id} not found")
        if instance.state != COLLECTING:
            raise StateError(f"Standup is {instance.state}", code="window_closed")
        if self._clock() >= instance.deadline:
            raise StateError("The response window for this standup has closed", code="window_closed")
        if (instance.participant(member_id) is None
                or not self._teams.is_active_member(member_id, instance.team_id)):
            raise NotFoundError(f"Member {member_id} is not participating in this standup")

        self._validate_indices(instance, answers)

        if self._answers.has_any(instance.id, member_id):
            raise ConflictError("Responses already submitted", code="already_submitted")

        stored = self._answers.insert_all(
            instance.id, member_id,
            [(a.question_index, a.text) for a in answers],
            self._clock(),
        )
        ANSWERS_SUBMITTED.inc(stored)
        logger.info("Answers submitted instance=%s member=%s count=%d",
                    instance.id, member_id, stored)

        self._complete_if_everyone_answered(instance)
        return stored

    @staticmethod
    def _validate_indices(instance: StandupInstance, answers: Sequence[AnswerInput]) -> None:
        if not answers:
            raise ValidationError("At least one answer is required")
        total = len(instance.snapshot.questions)
        seen = set()
        for a in answers:
            if a.question_index < 0 or a.question_index >= total:
                raise ValidationError(
                    f"Question index {a.question_index} is out of range (0-{total - 1})",
                    code="invalid_question_index",
                )
            if a.question_index in seen:
                raise ValidationError(
                    f"Question index {a.question_index} answered twice",
                    code="invalid_question_index",
                )
            seen.add(a.question_index)

    def _complete_if_everyone_answered(self, instance: StandupInstance) -> None:
        total = len(instance.snapshot.questions)
        active = self._teams.active_member_ids(instance.team_id)
        participants = [p for p in instance.snapshot.participants if p.id in active]
        if not participants:
            return
        counts = self._answers.count_by_member(instance.id)
        if all(counts.get(p.id, 0) >= total for p in participants):
            self._states.transition(instance, COMPLETED, trigger="all_answered")

    # ── Read ──

    def summarize(self, instance: StandupInstance) -> DigestSummary:
        """Response rate and per-member status, computed from the snapshot roster."""
        total_q = len(instance.snapshot.questions)
        by_member: Dict[str, List[AnswerRecord]] = {}
        for record in self._answers.list_for_instance(instance.id):
            by_member.setdefault(record.member_id, []).append(record)

        members = []
        for p in instance.snapshot.participants:
            records = by_member.get(p.id, [])
            members.append(MemberStatus(
                member_id=p.id,
                name=p.name,
                platform_user_id=p.platform_user_id,
                questions_answered=len(records),
                total_questions=total_q,
                is_complete=len(records) >= total_q,
                answers=records,
            ))
        responded = sum(1 for m in members if m.questions_answered > 0)
        total = len(members)
        return DigestSummary(
            instance_id=instance.id,
            team_id=instance.team_id,
            target_date=instance.target_date,
            questions=instance.snapshot.questions,
            responded=responded,
            total_members=total,
            response_rate=round(responded / total * 100, 1) if total else 0.0,
            members=members,
        )

    def get_answers(self, instance_id: str, org_id: str) -> DigestSummary:
        instance = self._instances.get_for_org(instance_id, org_id)
        if instance is None:
            raise NotFoundError(f"Standup {instance_id} not found")
        return self.summarize(instance)
