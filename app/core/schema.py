# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Table definitions. Repositories query with raw ``text()`` SQL; this module
only owns the DDL and the constraints the core relies on:

* one instance per (config_id, target_date)
* one answer per (instance_id, member_id, question_index)
* one delivery row per (instance_id, recipient)
* one dedup row per external event id
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

organizations = Table(
    "organizations",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False),
)

teams = Table(
    "teams",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("org_id", String(64), ForeignKey("organizations.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("channel_id", String(64)),
)

team_members = Table(
    "team_members",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("team_id", String(64), ForeignKey("teams.id"), nullable=False),
    Column("platform_user_id", String(64), nullable=False),
    Column("name", String(255), nullable=False),
    Column("active", Boolean, nullable=False, default=True),
)

standup_configs = Table(
    "standup_configs",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("team_id", String(64), ForeignKey("teams.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("questions", JSON, nullable=False),
    Column("weekdays", JSON, nullable=False),
    Column("time_local", String(5), nullable=False),
    Column("timezone", String(64), nullable=False),
    Column("reminder_minutes_before", Integer, nullable=False, default=10),
    Column("response_window_hours", Integer, nullable=False, default=24),
    Column("delivery_target", String(16), nullable=False, default="channel"),
    Column("target_channel_id", String(64)),
    Column("is_active", Boolean, nullable=False, default=True),
)

standup_config_members = Table(
    "standup_config_members",
    metadata,
    Column("config_id", String(64), ForeignKey("standup_configs.id"), nullable=False),
    Column("member_id", String(64), ForeignKey("team_members.id"), nullable=False),
    Column("include", Boolean, nullable=False, default=True),
    Column("role", String(32)),
    PrimaryKeyConstraint("config_id", "member_id"),
)

standup_instances = Table(
    "standup_instances",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("config_id", String(64), ForeignKey("standup_configs.id"), nullable=False),
    Column("team_id", String(64), ForeignKey("teams.id"), nullable=False),
    Column("target_date", Date, nullable=False),
    Column("config_snapshot", JSON, nullable=False),
    Column("state", String(16), nullable=False, default="collecting"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("reminder_sent_at", DateTime(timezone=True)),
    Column("closed_at", DateTime(timezone=True)),
    Column("digest_posted_at", DateTime(timezone=True)),
    Column("digest_attempts", Integer, nullable=False, default=0),
    UniqueConstraint("config_id", "target_date", name="uq_instance_config_date"),
)

answers = Table(
    "answers",
    metadata,
    Column("instance_id", String(64), ForeignKey("standup_instances.id"), nullable=False),
    Column("member_id", String(64), ForeignKey("team_members.id"), nullable=False),
    Column("question_index", Integer, nullable=False),
    Column("text", Text, nullable=False),
    Column("submitted_at", DateTime(timezone=True), nullable=False),
    PrimaryKeyConstraint("instance_id", "member_id", "question_index"),
)

standup_deliveries = Table(
    "standup_deliveries",
    metadata,
    Column("instance_id", String(64), ForeignKey("standup_instances.id"), nullable=False),
    Column("recipient", String(64), nullable=False),
    Column("attempts", Integer, nullable=False, default=0),
    Column("delivered_at", DateTime(timezone=True)),
    Column("last_error", Text),
    PrimaryKeyConstraint("instance_id", "recipient"),
)

processed_events = Table(
    "processed_events",
    metadata,
    Column("event_id", String(255), primary_key=True),
    Column("first_seen_at", DateTime(timezone=True), nullable=False),
)

workspace_links = Table(
    "workspace_links",
    metadata,
    Column("workspace_id", String(64), primary_key=True),
    Column("org_id", String(64), ForeignKey("organizations.id")),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)
