# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: standup answers submitted from inside Slack.

Three routes end in ``AnswerCollectionService.submit_full_response``:

* the "Answer here" button on a prompt opens the answer modal
* the modal's ``view_submission`` carries one input per question
* a free-text DM to the bot is parsed into answers for the member's latest
  open standup

The chat user is resolved to a team member through the workspace's linked
organization and ``platform_user_id``. Rejections are sent back to the user
as a DM and then re-raised so the pipeline counts them.
"""
import re
from typing import Any, Dict, List, Optional, Tuple

from app.core.errors import NotFoundError, StandupError, TransientError, ValidationError
from app.core.logging import get_logger
from app.models.domain import (
    COLLECTING,
    AnswerInput,
    CanonicalEvent,
    Linked,
    Participant,
    StandupInstance,
    TeamMember,
)
from app.repositories.instance_repository import InstanceRepository
from app.repositories.team_repository import TeamRepository
from app.services import message_formatter
from app.services.answer_service import AnswerCollectionService
from app.services.link_service import LinkHandler

logger = get_logger(__name__)

MAX_ANSWER_LENGTH = 4000
MAX_LINE_ANSWERS = 5

_CALLBACK_RE = re.compile(rf"^{message_formatter.RESPONSE_CALLBACK_PREFIX}(.+)$")
_QUESTION_BLOCK_RE = re.compile(r"^question_(\d+)$")
_NUMBERED_RE = re.compile(r"^\s*(\d+)[.)]\s*(.*)$")
_BULLET_RE = re.compile(r"^\s*[•\-*]\s*(.*)$")


def _split_items(lines: List[str], pattern: re.Pattern) -> List[str]:
    """Group lines into items that start at each ``pattern`` match; leading text is dropped."""
    items: List[List[str]] = []
    for line in lines:
        match = pattern.match(line)
        if match:
            items.append([match.group(match.lastindex)])
        elif items:
            items[-1].append(line.strip())
    return ["\n".join(part for part in item if part).strip() for item in items]


def parse_free_text(text: str, question_count: int) -> List[AnswerInput]:
    """Map a DM reply onto questions.

    Tried in order: a numbered list (``1.`` or ``1)``), a bullet list, one
    answer per line when there are no more lines than questions (and at most
    five), and finally the whole text as the answer to the first question.
    Empty answers are dropped.
    """
    body = text.strip()
    lines = body.splitlines()
    numbered = [a for a in _split_items(lines, _NUMBERED_RE) if a]
    bullets = [a for a in _split_items(lines, _BULLET_RE) if a]
    non_empty = [line.strip() for line in lines if line.strip()]

    if len(numbered) > 1 or (len(numbered) == 1 and question_count == 1):
        parts = numbered
    elif len(bullets) > 1:
        parts = bullets
    elif 1 < len(non_empty) <= min(question_count, MAX_LINE_ANSWERS):
        parts = non_empty
    else:
        parts = [body]
    return [
        AnswerInput(question_index=i, text=part[:MAX_ANSWER_LENGTH])
        for i, part in enumerate(parts[:question_count])
        if part
    ]


def modal_answers(values: Dict[str, Any], question_count: int) -> List[AnswerInput]:
    """Read ``view.state.values``; blocks are keyed ``question_<index>``."""
    answers = []
    for block_id, block in (values or {}).items():
        match = _QUESTION_BLOCK_RE.match(block_id)
        if not match or not isinstance(block, dict):
            continue
        index = int(match.group(1))
        element = next(iter(block.values()), None) or {}
        value = (element.get("value") or "").strip()
        if value and index < question_count:
            answers.append(AnswerInput(question_index=index, text=value[:MAX_ANSWER_LENGTH]))
    return sorted(answers, key=lambda a: a.question_index)


def _participant(member: TeamMember) -> Participant:
    return Participant(id=member.id, name=member.name, platform_user_id=member.platform_user_id)


class SlackResponseService:
    def __init__(
        self,
        link_handler: LinkHandler,
        team_repo: TeamRepository,
        instance_repo: InstanceRepository,
        answer_service: AnswerCollectionService,
        messaging,
    ):
        self._links = link_handler
        self._teams = team_repo
        self._instances = instance_repo
        self._answers = answer_service
        self._messaging = messaging

    # ── Event handlers ──

    def handle_block_actions(self, event: CanonicalEvent) -> None:
        for action in event.payload.get("actions") or []:
            if action.get("action_id") != message_formatter.SUBMIT_ACTION:
                continue
            org_id = self._org_of(event.workspace_id)
            instance = self._instances.get_for_org(action.get("value") or "", org_id)
            if instance is None:
                raise NotFoundError("This standup no longer exists")
            member = self._member_for(org_id, event.user_id, instance)
            if member is None:
                raise NotFoundError("You are not a participant in this standup")
            self._open_modal(event, instance, member)

    def handle_view_submission(self, event: CanonicalEvent) -> None:
        view = event.payload.get("view") or {}
        match = _CALLBACK_RE.match(view.get("callback_id") or "")
        if not match:
            logger.info("View submission ignored callback=%s", view.get("callback_id"))
            return
        org_id = self._org_of(event.workspace_id)
        instance = self._instances.get_for_org(match.group(1), org_id)
        if instance is None:
            raise NotFoundError("This standup no longer exists")
        member = self._member_for(org_id, event.user_id, instance)
        if member is None:
            logger.info("Modal from non-participant ignored user=%s standup=%s",
                        event.user_id, instance.id)
            return
        values = (view.get("state") or {}).get("values") or {}
        answers = modal_answers(values, len(instance.snapshot.questions))
        self._submit(instance, member, org_id, answers)

    def handle_direct_message(self, event: CanonicalEvent) -> None:
        payload = event.payload
        if payload.get("channel_type") != "im" or payload.get("bot_id") or payload.get("subtype"):
            return
        if not event.user_id or not (event.text or "").strip():
            return
        org_id = self._org_of(event.workspace_id)
        found = self._latest_open(org_id, event.user_id)
        if found is None:
            memberships = self._teams.find_members_by_platform_user(org_id, event.user_id)
            if memberships:
                self._notify(memberships[0], "There is no open standup waiting for your answers.")
            else:
                logger.info("DM from unknown user ignored user=%s workspace=%s",
                            event.user_id, event.workspace_id)
            return
        instance, member = found
        answers = parse_free_text(event.text, len(instance.snapshot.questions))
        self._submit(instance, member, org_id, answers)

    def open_modal_for_command(self, event: CanonicalEvent) -> str:
        """``/standup submit``: open the modal for the caller's latest open standup."""
        org_id = self._org_of(event.workspace_id)
        found = self._latest_open(org_id, event.user_id or "")
        if found is None:
            return "You have no open standup right now."
        instance, member = found
        self._open_modal(event, instance, member)
        return f"Opening *{instance.snapshot.config_name}* for {instance.target_date.isoformat()}."

    # ── Helpers ──

    def _org_of(self, workspace_id: str) -> str:
        state = self._links.status(workspace_id)
        if not isinstance(state, Linked):
            raise NotFoundError("This workspace is not connected to any organization")
        return state.org_id

    def _member_for(self, org_id: str, user_id: Optional[str],
                    instance: StandupInstance) -> Optional[TeamMember]:
        for member in self._teams.find_members_by_platform_user(org_id, user_id or ""):
            if member.team_id == instance.team_id and instance.participant(member.id):
                return member
        return None

    def _latest_open(self, org_id: str,
                     user_id: str) -> Optional[Tuple[StandupInstance, TeamMember]]:
        candidates = []
        for member in self._teams.find_members_by_platform_user(org_id, user_id):
            for instance in self._instances.list_open_for_team(member.team_id):
                if instance.participant(member.id):
                    candidates.append((instance, member))
        if not candidates:
            return None
        return max(candidates, key=lambda pair: pair[0].created_at)

    def _open_modal(self, event: CanonicalEvent, instance: StandupInstance,
                    member: TeamMember) -> None:
        if instance.state != COLLECTING:
            self._notify(member, f"*{instance.snapshot.config_name}* is no longer accepting responses.")
            return
        trigger_id = event.payload.get("trigger_id")
        if not trigger_id:
            raise ValidationError("Interaction is missing trigger_id")
        self._messaging.open_view(trigger_id, message_formatter.response_modal(instance))
        logger.info("Answer modal opened standup=%s member=%s", instance.id, member.id)

    def _submit(self, instance: StandupInstance, member: TeamMember, org_id: str,
                answers: List[AnswerInput]) -> None:
        try:
            stored = self._answers.submit_full_response(instance.id, answers, member.id, org_id)
        except StandupError as exc:
            self._notify(member, f":warning: {exc.message}")
            raise
        logger.info("Slack answers accepted standup=%s member=%s count=%d",
                    instance.id, member.id, stored)
        self._notify(member, f":white_check_mark: Thanks! {stored} answer(s) recorded for "
                             f"*{instance.snapshot.config_name}*.")

    def _notify(self, member: TeamMember, text: str) -> None:
        try:
            self._messaging.post_direct(_participant(member), {"text": text})
        except TransientError as exc:
            logger.warning("Reply DM failed member=%s: %s", member.id, exc)
