# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: organizations, teams, members and standup configs.

These rows are provisioned by configuration management; the standup core
only reads them.
"""
import json
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from app.models.domain import ConfigMember, StandupConfig, TeamMember

CONFIG_COLS = (
    "c.id, c.team_id, t.org_id, t.name, c.name, c.questions, c.weekdays, "
    "c.time_local, c.timezone, c.reminder_minutes_before, c.response_window_hours, "
    "c.delivery_target, COALESCE(c.target_channel_id, t.channel_id), c.is_active"
)
MEMBER_COLS = "m.id, m.team_id, m.platform_user_id, m.name, m.active"


def _json(value: Any) -> Any:
    return value if isinstance(value, (list, dict)) else json.loads(value)


def _row_to_member(row, offset: int = 0) -> TeamMember:
    return TeamMember(
        id=str(row[offset]),
        team_id=str(row[offset + 1]),
        platform_user_id=row[offset + 2],
        name=row[offset + 3],
        active=bool(row[offset + 4]),
    )


def _row_to_config(row, members: List[ConfigMember]) -> StandupConfig:
    return StandupConfig(
        id=str(row[0]),
        team_id=str(row[1]),
        org_id=str(row[2]),
        team_name=row[3],
        name=row[4],
        questions=_json(row[5]),
        weekdays=_json(row[6]),
        time_local=row[7],
        timezone=row[8],
        reminder_minutes_before=row[9],
        response_window_hours=row[10],
        delivery_target=row[11],
        target_channel_id=row[12],
        is_active=bool(row[13]),
        members=members,
    )


class TeamRepository:
    def __init__(self, engine: Engine):
        self._engine = engine

    # ── Read ───────────────────────────────────────────────────────────

    def org_exists(self, org_id: str) -> bool:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT 1 FROM organizations WHERE id = :id"), {"id": org_id}
            ).fetchone()
        return row is not None

    def get_team(self, team_id: str) -> Optional[Dict[str, Any]]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT id, org_id, name, channel_id FROM teams WHERE id = :id"),
                {"id": team_id},
            ).fetchone()
        if not row:
            return None
        return {"id": str(row[0]), "org_id": str(row[1]), "name": row[2], "channel_id": row[3]}

    def get_member(self, member_id: str) -> Optional[TeamMember]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT {MEMBER_COLS} FROM team_members m WHERE m.id = :id"),
                {"id": member_id},
            ).fetchone()
        return _row_to_member(row) if row else None

    def is_active_member(self, member_id: str, team_id: str) -> bool:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT 1 FROM team_members
                    WHERE id = :id AND team_id = :team_id AND active = :active
                """),
                {"id": member_id, "team_id": team_id, "active": True},
            ).fetchone()
        return row is not None

    def find_members_by_platform_user(self, org_id: str, platform_user_id: str) -> List[TeamMember]:
        """Active memberships of a chat user across the teams of one org."""
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT {MEMBER_COLS}
                    FROM team_members m JOIN teams t ON t.id = m.team_id
                    WHERE t.org_id = :org_id AND m.platform_user_id = :user_id
                      AND m.active = :active
                    ORDER BY m.id
                """),
                {"org_id": org_id, "user_id": platform_user_id, "active": True},
            ).fetchall()
        return [_row_to_member(r) for r in rows]

    def active_member_ids(self, team_id: str) -> set[str]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("SELECT id FROM team_members WHERE team_id = :team_id AND active = :active"),
                {"team_id": team_id, "active": True},
            ).fetchall()
        return {str(r[0]) for r in rows}

    def list_active_configs(self) -> List[StandupConfig]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT {CONFIG_COLS}
                    FROM standup_configs c JOIN teams t ON t.id = c.team_id
                    WHERE c.is_active = :active
                    ORDER BY c.id
                """),
                {"active": True},
            ).fetchall()
            member_rows = conn.execute(
                text(f"""
                    SELECT cm.config_id, cm.include, cm.role, {MEMBER_COLS}
                    FROM standup_config_members cm
                    JOIN team_members m ON m.id = cm.member_id
                    JOIN standup_configs c ON c.id = cm.config_id
                    WHERE c.is_active = :active
                    ORDER BY m.name
                """),
                {"active": True},
            ).fetchall()

        by_config: Dict[str, List[ConfigMember]] = {}
        for r in member_rows:
            by_config.setdefault(str(r[0]), []).append(
                ConfigMember(member=_row_to_member(r, offset=3), include=bool(r[1]), role=r[2])
            )
        return [_row_to_config(r, by_config.get(str(r[0]), [])) for r in rows]
