# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Domain models: pure data structures, NO FastAPI dependency.
"""

from datetime import date, datetime, timedelta
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# ── Instance lifecycle ──

COLLECTING = "collecting"
COMPLETED = "completed"
CANCELLED = "cancelled"

ALLOWED_TRANSITIONS = {
    COLLECTING: {COMPLETED, CANCELLED},
    COMPLETED:  set(),
    CANCELLED:  set(),
}
TERMINAL_STATES = {COMPLETED, CANCELLED}

DELIVERY_CHANNEL = "channel"
DELIVERY_DIRECT = "direct"


# ── Teams & configuration (read-only inputs) ──

class TeamMember(BaseModel):
    id: str
    team_id: str
    platform_user_id: str
    name: str
    active: bool = True


class ConfigMember(BaseModel):
    member: TeamMember
    include: bool = True
    role: Optional[str] = None


class StandupConfig(BaseModel):
    """A team's recurring standup definition. Weekdays use 0=Sunday .. 6=Saturday."""
    id: str
    team_id: str
    org_id: str
    team_name: str = ""
    name: str
    questions: list[str] = Field(..., min_length=1)
    weekdays: list[int]
    time_local: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    timezone: str
    reminder_minutes_before: int = 10
    response_window_hours: int = 24
    delivery_target: Literal["channel", "direct"] = DELIVERY_CHANNEL
    target_channel_id: Optional[str] = None
    is_active: bool = True
    members: list[ConfigMember] = Field(default_factory=list)

    def participants(self) -> list["Participant"]:
        return [
            Participant(id=cm.member.id, name=cm.member.name,
                        platform_user_id=cm.member.platform_user_id)
            for cm in self.members
            if cm.include and cm.member.active
        ]


class Participant(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    platform_user_id: str


class ConfigSnapshot(BaseModel):
    """Immutable copy of a config taken when an instance is created."""
    model_config = ConfigDict(frozen=True)

    config_name: str
    questions: tuple[str, ...]
    weekdays: tuple[int, ...]
    time_local: str
    timezone: str
    reminder_minutes_before: int
    response_window_hours: int
    delivery_target: str
    target_channel_id: Optional[str] = None
    participants: tuple[Participant, ...] = ()

    @classmethod
    def from_config(cls, config: StandupConfig,
                    participants: list[Participant]) -> "ConfigSnapshot":
        return cls(
            config_name=config.name,
            questions=tuple(config.questions),
            weekdays=tuple(config.weekdays),
            time_local=config.time_local,
            timezone=config.timezone,
            reminder_minutes_before=config.reminder_minutes_before,
            response_window_hours=config.response_window_hours,
            delivery_target=config.delivery_target,
            target_channel_id=config.target_channel_id,
            participants=tuple(p.model_copy() for p in participants),
        )


class StandupInstance(BaseModel):
    id: str
    config_id: str
    team_id: str
    org_id: str
    target_date: date
    snapshot: ConfigSnapshot
    state: str = COLLECTING
    created_at: datetime
    reminder_sent_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    digest_posted_at: Optional[datetime] = None
    digest_attempts: int = 0

    @property
    def deadline(self) -> datetime:
        return self.created_at + timedelta(hours=self.snapshot.response_window_hours)

    @property
    def reminder_at(self) -> datetime:
        return self.deadline - timedelta(minutes=self.snapshot.reminder_minutes_before)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def participant(self, member_id: str) -> Optional[Participant]:
        for p in self.snapshot.participants:
            if p.id == member_id:
                return p
        return None


class AnswerInput(BaseModel):
    question_index: int
    text: str = Field(..., min_length=1, max_length=4000)


class AnswerRecord(BaseModel):
    instance_id: str
    member_id: str
    question_index: int
    text: str
    submitted_at: Optional[datetime] = None


# ── Magic tokens ──

class MagicTokenClaims(BaseModel):
    standup_instance_id: str
    team_member_id: str
    platform_user_id: str
    org_id: str
    issued_at: datetime
    expires_at: datetime


class MagicTokenInfo(BaseModel):
    token: str
    expires_at: datetime
    submission_url: str


# ── Workspace link state ──

class Unlinked(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["unlinked"] = "unlinked"


class Linked(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["linked"] = "linked"
    org_id: str


LinkState = Union[Unlinked, Linked]


# ── Inbound events ──

class CanonicalEvent(BaseModel):
    """Platform payloads normalised into one record shape."""
    event_id: str
    kind: Literal["event", "interactive", "command"]
    event_type: str
    workspace_id: str
    user_id: Optional[str] = None
    channel_id: Optional[str] = None
    occurred_at: datetime
    command: Optional[str] = None
    text: Optional[str] = None
    action_ids: list[str] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)


# ── Digest ──

class MemberStatus(BaseModel):
    member_id: str
    name: str
    platform_user_id: str
    questions_answered: int
    total_questions: int
    is_complete: bool
    answers: list[AnswerRecord] = Field(default_factory=list)


class DigestSummary(BaseModel):
    instance_id: str
    team_id: str
    target_date: date
    questions: tuple[str, ...]
    responded: int
    total_members: int
    response_rate: float
    members: list[MemberStatus]
