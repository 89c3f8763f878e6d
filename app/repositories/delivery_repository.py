# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: outbound standup deliveries (announcement and per-member prompts).

Pending rows are written with the instance (see
``InstanceRepository.create_if_absent``). A send is claimed by
bumping ``attempts`` from the value the caller last saw, so two workers
never send the same pending delivery in one round.
"""
from datetime import datetime
from typing import List, NamedTuple

from sqlalchemy import text
from sqlalchemy.engine import Engine

from app.core.clock import to_db

ANNOUNCEMENT = "#announcement"


class PendingDelivery(NamedTuple):
    instance_id: str
    recipient: str
    attempts: int


class DeliveryRepository:
    def __init__(self, engine: Engine):
        self._engine = engine

    # ── Write ──────────────────────────────────────────────────────────

    def claim(self, instance_id: str, recipient: str, seen_attempts: int) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                text("""
                    UPDATE standup_deliveries SET attempts = attempts + 1
                    WHERE instance_id = :iid AND recipient = :recipient
                      AND delivered_at IS NULL AND attempts = :seen
                """),
                {"iid": instance_id, "recipient": recipient, "seen": seen_attempts},
            )
        return result.rowcount == 1

    def mark_delivered(self, instance_id: str, recipient: str, now: datetime) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text("""
                    UPDATE standup_deliveries SET delivered_at = :now, last_error = NULL
                    WHERE instance_id = :iid AND recipient = :recipient
                """),
                {"iid": instance_id, "recipient": recipient, "now": to_db(now)},
            )

    def mark_failed(self, instance_id: str, recipient: str, error: str) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text("""
                    UPDATE standup_deliveries SET last_error = :error
                    WHERE instance_id = :iid AND recipient = :recipient
                """),
                {"iid": instance_id, "recipient": recipient, "error": error[:500]},
            )

    # ── Read ───────────────────────────────────────────────────────────

    def list_pending(self, max_attempts: int) -> List[PendingDelivery]:
        """Undelivered rows of collecting instances that still have attempts left."""
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT d.instance_id, d.recipient, d.attempts
                    FROM standup_deliveries d
                    JOIN standup_instances i ON i.id = d.instance_id
                    WHERE i.state = 'collecting' AND d.delivered_at IS NULL
                      AND d.attempts < :max_attempts
                    ORDER BY i.created_at, d.recipient
                """),
                {"max_attempts": max_attempts},
            ).fetchall()
        return [PendingDelivery(str(r[0]), str(r[1]), r[2]) for r in rows]
