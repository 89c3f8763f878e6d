# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: standup instances.

Every mutation that must happen at most once is a conditional write here:
insert-if-absent on (config_id, target_date), and updates guarded by the
expected prior state or an unset marker. Callers read ``rowcount`` to learn
whether they won.
"""
import json
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from app.core.clock import parse_date, parse_datetime, to_db
from app.core.logging import get_logger
from app.models.domain import CANCELLED, COMPLETED, ConfigSnapshot, StandupInstance

logger = get_logger(__name__)

INSTANCE_COLS = (
    "i.id, i.config_id, i.team_id, t.org_id, i.target_date, i.config_snapshot, i.state, "
    "i.created_at, i.reminder_sent_at, i.closed_at, i.digest_posted_at, i.digest_attempts"
)
INSTANCE_FROM = "standup_instances i JOIN teams t ON t.id = i.team_id"


def lock_collecting(conn, instance_id: str) -> int:
    """Row-lock the instance inside ``conn``'s transaction if it is still collecting."""
    return conn.execute(
        text("UPDATE standup_instances SET state = state WHERE id = :id AND state = 'collecting'"),
        {"id": instance_id},
    ).rowcount


def _row_to_instance(row) -> StandupInstance:
    snapshot = row[5] if isinstance(row[5], dict) else json.loads(row[5])
    return StandupInstance(
        id=str(row[0]),
        config_id=str(row[1]),
        team_id=str(row[2]),
        org_id=str(row[3]),
        target_date=parse_date(row[4]),
        snapshot=ConfigSnapshot.model_validate(snapshot),
        state=row[6],
        created_at=parse_datetime(row[7]),
        reminder_sent_at=parse_datetime(row[8]),
        closed_at=parse_datetime(row[9]),
        digest_posted_at=parse_datetime(row[10]),
        digest_attempts=row[11] or 0,
    )


class InstanceRepository:
    def __init__(self, engine: Engine):
        self._engine = engine

    # ── Write ──────────────────────────────────────────────────────────

    def create_if_absent(self, instance: StandupInstance, recipients: Iterable[str] = ()) -> bool:
        """Insert the instance unless one already exists for (config_id, target_date).

        Pending delivery rows for ``recipients`` are written in the same
        transaction, so a created instance always has its sends on record.
        """
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    text("""
                        INSERT INTO standup_instances
                            (id, config_id, team_id, target_date, config_snapshot, state,
                             created_at, digest_attempts)
                        VALUES
                            (:id, :config_id, :team_id, :target_date, :snapshot, :state,
                             :created_at, 0)
                    """),
                    {
                        "id": instance.id,
                        "config_id": instance.config_id,
                        "team_id": instance.team_id,
                        "target_date": instance.target_date.isoformat(),
                        "snapshot": instance.snapshot.model_dump_json(),
                        "state": instance.state,
                        "created_at": to_db(instance.created_at),
                    },
                )
                for recipient in recipients:
                    conn.execute(
                        text("""
                            INSERT INTO standup_deliveries (instance_id, recipient, attempts)
                            VALUES (:iid, :recipient, 0)
                        """),
                        {"iid": instance.id, "recipient": recipient},
                    )
        except IntegrityError:
            logger.info("Instance already exists config=%s date=%s",
                        instance.config_id, instance.target_date)
            return False
        return True

    def transition(self, instance_id: str, from_state: str, to_state: str,
                   now: datetime) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                text("""
                    UPDATE standup_instances
                    SET state = :to_state, closed_at = :now
                    WHERE id = :id AND state = :from_state
                """),
                {"id": instance_id, "from_state": from_state, "to_state": to_state,
                 "now": to_db(now)},
            )
        return result.rowcount == 1

    def close_if_collecting(self, instance_id: str, now: datetime) -> Optional[str]:
        """Close a collecting instance as completed or cancelled.

        The outcome is decided from the answer count read while the row is
        held, so no answer can land between the count and the close.
        Returns the new state, or None when the instance was not collecting.
        """
        with self._engine.begin() as conn:
            if lock_collecting(conn, instance_id) == 0:
                return None
            answers = conn.execute(
                text("SELECT COUNT(*) FROM answers WHERE instance_id = :id"),
                {"id": instance_id},
            ).scalar() or 0
            outcome = COMPLETED if answers else CANCELLED
            conn.execute(
                text("""
                    UPDATE standup_instances
                    SET state = :outcome, closed_at = :now
                    WHERE id = :id AND state = 'collecting'
                """),
                {"id": instance_id, "outcome": outcome, "now": to_db(now)},
            )
        return outcome

    def claim_reminder(self, instance_id: str, now: datetime) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                text("""
                    UPDATE standup_instances SET reminder_sent_at = :now
                    WHERE id = :id AND state = 'collecting' AND reminder_sent_at IS NULL
                """),
                {"id": instance_id, "now": to_db(now)},
            )
        return result.rowcount == 1

    def release_reminder(self, instance_id: str, claimed_at: datetime) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text("""
                    UPDATE standup_instances SET reminder_sent_at = NULL
                    WHERE id = :id AND reminder_sent_at = :claimed_at
                """),
                {"id": instance_id, "claimed_at": to_db(claimed_at)},
            )

    def claim_digest(self, instance_id: str, now: datetime) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                text("""
                    UPDATE standup_instances SET digest_posted_at = :now
                    WHERE id = :id AND state <> 'collecting' AND digest_posted_at IS NULL
                """),
                {"id": instance_id, "now": to_db(now)},
            )
        return result.rowcount == 1

    def release_digest(self, instance_id: str) -> None:
        """Undo a digest claim after a failed post and count the attempt."""
        with self._engine.begin() as conn:
            conn.execute(
                text("""
                    UPDATE standup_instances
                    SET digest_posted_at = NULL, digest_attempts = digest_attempts + 1
                    WHERE id = :id
                """),
                {"id": instance_id},
            )

    # ── Read ───────────────────────────────────────────────────────────

    def get(self, instance_id: str) -> Optional[StandupInstance]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT {INSTANCE_COLS} FROM {INSTANCE_FROM} WHERE i.id = :id"),
                {"id": instance_id},
            ).fetchone()
        return _row_to_instance(row) if row else None

    def get_for_org(self, instance_id: str, org_id: str) -> Optional[StandupInstance]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(f"""
                    SELECT {INSTANCE_COLS} FROM {INSTANCE_FROM}
                    WHERE i.id = :id AND t.org_id = :org_id
                """),
                {"id": instance_id, "org_id": org_id},
            ).fetchone()
        return _row_to_instance(row) if row else None

    def get_by_config_date(self, config_id: str, target_date) -> Optional[StandupInstance]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(f"""
                    SELECT {INSTANCE_COLS} FROM {INSTANCE_FROM}
                    WHERE i.config_id = :config_id AND i.target_date = :target_date
                """),
                {"config_id": config_id, "target_date": target_date.isoformat()},
            ).fetchone()
        return _row_to_instance(row) if row else None

    def list_open_for_team(self, team_id: str) -> List[StandupInstance]:
        """Collecting instances of a team, newest first."""
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT {INSTANCE_COLS} FROM {INSTANCE_FROM}
                    WHERE i.team_id = :team_id AND i.state = 'collecting'
                    ORDER BY i.created_at DESC
                """),
                {"team_id": team_id},
            ).fetchall()
        return [_row_to_instance(r) for r in rows]

    def list_by_state(self, state: str) -> List[StandupInstance]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT {INSTANCE_COLS} FROM {INSTANCE_FROM}
                    WHERE i.state = :state ORDER BY i.created_at
                """),
                {"state": state},
            ).fetchall()
        return [_row_to_instance(r) for r in rows]

    def list_undigested(self, max_attempts: int) -> List[StandupInstance]:
        """Terminal instances whose digest has not been posted yet."""
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT {INSTANCE_COLS} FROM {INSTANCE_FROM}
                    WHERE i.state IN ('completed', 'cancelled')
                      AND i.digest_posted_at IS NULL
                      AND i.digest_attempts < :max_attempts
                    ORDER BY i.created_at
                """),
                {"max_attempts": max_attempts},
            ).fetchall()
        return [_row_to_instance(r) for r in rows]

    # ── Health ─────────────────────────────────────────────────────────

    def verify_connection(self) -> None:
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))
