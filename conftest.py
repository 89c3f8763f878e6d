"""
Shared fixtures: in-memory SQLite, a controllable clock and a recording
messenger. Environment is set before any ``app`` import so Settings picks it up.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["MAGIC_TOKEN_SECRET"] = "test-magic-secret"
os.environ["SLACK_SIGNING_SECRET"] = "test-signing-secret"
os.environ["SLACK_BOT_TOKEN"] = ""
os.environ["DEDUP_BACKEND"] = "sql"
os.environ["APP_URL"] = "https://standup.test"
os.environ["API_KEYS"] = "test-api-key"

import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from app.core.database import engine
from app.core.errors import TransientError
from app.core.schema import metadata
from app.jobs.digest_job import StandupDigestJob
from app.jobs.reminder_job import StandupReminderJob
from app.jobs.scheduler_job import StandupSchedulerJob
from app.models.domain import (
    COLLECTING,
    ConfigMember,
    ConfigSnapshot,
    StandupConfig,
    StandupInstance,
    TeamMember,
)
from app.repositories.answer_repository import AnswerRepository
from app.repositories.delivery_repository import DeliveryRepository
from app.repositories.instance_repository import InstanceRepository
from app.repositories.link_repository import LinkRepository
from app.repositories.team_repository import TeamRepository
from app.services.answer_service import AnswerCollectionService
from app.services.instance_state import InstanceStateMachine
from app.services.magic_token_service import MagicTokenService

# Monday 2026-01-05, 09:00 in New York (EST, UTC-5)
MONDAY_9AM_NY = datetime(2026, 1, 5, 14, 0, tzinfo=timezone.utc)
QUESTIONS = ["What did you do yesterday?", "What will you do today?", "Any blockers?"]


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingMessenger:
    """Stands in for SlackMessagingClient; can be told to fail per member."""

    def __init__(self):
        self.channel_posts = []
        self.direct_posts = []
        self.fail_members = set()
        self.fail_channel = False
        self.views = []

    def post_to_channel(self, target, content):
        if self.fail_channel:
            raise TransientError(f"channel {target} unavailable")
        self.channel_posts.append((target, content))

    def post_direct(self, member, content):
        if member.id in self.fail_members:
            raise TransientError(f"dm to {member.id} failed")
        self.direct_posts.append((member.id, content))

    def open_view(self, trigger_id, view):
        self.views.append((trigger_id, view))

    def direct_recipients(self):
        return [member_id for member_id, _ in self.direct_posts]


class TeamSeeder:
    """Writes the org/team/member/config rows the service itself only reads."""

    def __init__(self, engine):
        self._engine = engine

    def save_org(self, org_id, name):
        with self._engine.begin() as conn:
            conn.execute(
                text("INSERT INTO organizations (id, name) VALUES (:id, :name)"),
                {"id": org_id, "name": name},
            )

    def save_team(self, team_id, org_id, name, channel_id=None):
        with self._engine.begin() as conn:
            conn.execute(
                text("INSERT INTO teams (id, org_id, name, channel_id) "
                     "VALUES (:id, :org_id, :name, :channel_id)"),
                {"id": team_id, "org_id": org_id, "name": name, "channel_id": channel_id},
            )

    def save_member(self, member):
        with self._engine.begin() as conn:
            conn.execute(text("DELETE FROM team_members WHERE id = :id"), {"id": member.id})
            conn.execute(
                text("INSERT INTO team_members (id, team_id, platform_user_id, name, active) "
                     "VALUES (:id, :team_id, :platform_user_id, :name, :active)"),
                member.model_dump(),
            )

    def save_config(self, config):
        """Replace a config and its member inclusions."""
        with self._engine.begin() as conn:
            conn.execute(text("DELETE FROM standup_config_members WHERE config_id = :id"),
                         {"id": config.id})
            conn.execute(text("DELETE FROM standup_configs WHERE id = :id"), {"id": config.id})
            conn.execute(
                text("""
                    INSERT INTO standup_configs
                        (id, team_id, name, questions, weekdays, time_local, timezone,
                         reminder_minutes_before, response_window_hours, delivery_target,
                         target_channel_id, is_active)
                    VALUES
                        (:id, :team_id, :name, :questions, :weekdays, :time_local, :timezone,
                         :reminder, :window, :delivery, :channel, :active)
                """),
                {
                    "id": config.id,
                    "team_id": config.team_id,
                    "name": config.name,
                    "questions": json.dumps(config.questions),
                    "weekdays": json.dumps(config.weekdays),
                    "time_local": config.time_local,
                    "timezone": config.timezone,
                    "reminder": config.reminder_minutes_before,
                    "window": config.response_window_hours,
                    "delivery": config.delivery_target,
                    "channel": config.target_channel_id,
                    "active": config.is_active,
                },
            )
            for cm in config.members:
                conn.execute(
                    text("INSERT INTO standup_config_members (config_id, member_id, include, role) "
                         "VALUES (:config_id, :member_id, :include, :role)"),
                    {"config_id": config.id, "member_id": cm.member.id,
                     "include": cm.include, "role": cm.role},
                )


@pytest.fixture(autouse=True)
def fresh_db():
    metadata.drop_all(engine)
    metadata.create_all(engine)
    yield


@pytest.fixture
def clock():
    return FakeClock(MONDAY_9AM_NY)


@pytest.fixture
def messenger():
    return RecordingMessenger()


@pytest.fixture
def seeder():
    return TeamSeeder(engine)


@pytest.fixture
def team_repo():
    return TeamRepository(engine)


@pytest.fixture
def instance_repo():
    return InstanceRepository(engine)


@pytest.fixture
def answer_repo():
    return AnswerRepository(engine)


@pytest.fixture
def link_repo():
    return LinkRepository(engine)


@pytest.fixture
def state_machine(instance_repo, clock):
    return InstanceStateMachine(instance_repo, clock=clock)


@pytest.fixture
def token_service(instance_repo, team_repo, answer_repo, clock):
    return MagicTokenService(
        instance_repo, team_repo, answer_repo,
        secret="test-magic-secret", app_url="https://standup.test", clock=clock,
    )


@pytest.fixture
def answer_service(instance_repo, answer_repo, team_repo, state_machine, clock):
    return AnswerCollectionService(instance_repo, answer_repo, team_repo, state_machine, clock=clock)


@pytest.fixture
def delivery_repo():
    return DeliveryRepository(engine)


@pytest.fixture
def scheduler_job(team_repo, instance_repo, delivery_repo, token_service, messenger, clock):
    return StandupSchedulerJob(team_repo, instance_repo, delivery_repo, token_service, messenger,
                               max_attempts=3, clock=clock)


@pytest.fixture
def reminder_job(instance_repo, answer_repo, team_repo, state_machine, token_service,
                 messenger, clock):
    return StandupReminderJob(instance_repo, answer_repo, team_repo, state_machine,
                              token_service, messenger, clock=clock)


@pytest.fixture
def digest_job(instance_repo, team_repo, state_machine, answer_service, messenger, clock):
    return StandupDigestJob(instance_repo, team_repo, state_machine,
                            answer_service, messenger, max_attempts=3, clock=clock)


@pytest.fixture
def members():
    return [
        TeamMember(id="m-1", team_id="team-1", platform_user_id="U001", name="Alice"),
        TeamMember(id="m-2", team_id="team-1", platform_user_id="U002", name="Bob"),
        TeamMember(id="m-3", team_id="team-1", platform_user_id="U003", name="Carol"),
    ]


@pytest.fixture
def config(seeder, members):
    """Org, team, three members (Carol excluded) and a Mon/Wed/Fri 09:00 NY config."""
    seeder.save_org("org-1", "Acme")
    seeder.save_org("org-2", "Globex")
    seeder.save_team("team-1", "org-1", "Platform", channel_id="C-TEAM")
    for m in members:
        seeder.save_member(m)
    cfg = StandupConfig(
        id="cfg-1",
        team_id="team-1",
        org_id="org-1",
        team_name="Platform",
        name="Daily Standup",
        questions=QUESTIONS,
        weekdays=[1, 3, 5],
        time_local="09:00",
        timezone="America/New_York",
        reminder_minutes_before=60,
        response_window_hours=24,
        delivery_target="channel",
        target_channel_id="C-STANDUP",
        members=[
            ConfigMember(member=members[0]),
            ConfigMember(member=members[1]),
            ConfigMember(member=members[2], include=False),
        ],
    )
    seeder.save_config(cfg)
    return cfg


@pytest.fixture
def make_instance(instance_repo, config):
    """Insert a collecting instance directly, bypassing the scheduler."""

    def _make(created_at, target_date=None, window_hours=24, reminder_minutes=60):
        snapshot = ConfigSnapshot.from_config(
            config.model_copy(update={
                "response_window_hours": window_hours,
                "reminder_minutes_before": reminder_minutes,
            }),
            config.participants(),
        )
        instance = StandupInstance(
            id=str(uuid.uuid4()),
            config_id=config.id,
            team_id=config.team_id,
            org_id=config.org_id,
            target_date=target_date or created_at.date(),
            snapshot=snapshot,
            state=COLLECTING,
            created_at=created_at,
        )
        assert instance_repo.create_if_absent(instance)
        return instance_repo.get(instance.id)

    return _make
