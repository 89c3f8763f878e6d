# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""Repository: per-question answers, unique on (instance, member, question)."""
from datetime import datetime
from typing import Dict, Iterable, List, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from app.core.clock import parse_datetime, to_db
from app.core.errors import ConflictError, StateError
from app.models.domain import AnswerRecord
from app.repositories.instance_repository import lock_collecting


class AnswerRepository:
    def __init__(self, engine: Engine):
        self._engine = engine

    # ── Write ──────────────────────────────────────────────────────────

    def insert_all(self, instance_id: str, member_id: str,
                   answers: Iterable[Tuple[int, str]], now: datetime) -> int:
        """Insert every answer in one transaction; any duplicate rolls back all of them.

        The instance row is locked first and must still be collecting, so an
        instance closed concurrently rejects the whole submission.
        """
        rows = [
            {"iid": instance_id, "mid": member_id, "idx": idx, "text": body, "ts": to_db(now)}
            for idx, body in answers
        ]
        try:
            with self._engine.begin() as conn:
                if lock_collecting(conn, instance_id) == 0:
                    raise StateError("This standup is no longer accepting responses",
                                     code="window_closed")
                for row in rows:
                    conn.execute(
                        text("""
                            INSERT INTO answers
                                (instance_id, member_id, question_index, text, submitted_at)
                            VALUES (:iid, :mid, :idx, :text, :ts)
                        """),
                        row,
                    )
        except IntegrityError as exc:
            raise ConflictError(
                "Answers already recorded for this member", code="already_submitted"
            ) from exc
        return len(rows)

    # ── Read ───────────────────────────────────────────────────────────

    def has_any(self, instance_id: str, member_id: str) -> bool:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT 1 FROM answers
                    WHERE instance_id = :iid AND member_id = :mid
                    LIMIT 1
                """),
                {"iid": instance_id, "mid": member_id},
            ).fetchone()
        return row is not None

    def count(self, instance_id: str) -> int:
        with self._engine.connect() as conn:
            return conn.execute(
                text("SELECT COUNT(*) FROM answers WHERE instance_id = :iid"),
                {"iid": instance_id},
            ).scalar() or 0

    def count_by_member(self, instance_id: str) -> Dict[str, int]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT member_id, COUNT(*) FROM answers
                    WHERE instance_id = :iid GROUP BY member_id
                """),
                {"iid": instance_id},
            ).fetchall()
        return {str(r[0]): r[1] for r in rows}

    def list_for_instance(self, instance_id: str) -> List[AnswerRecord]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT instance_id, member_id, question_index, text, submitted_at
                    FROM answers WHERE instance_id = :iid
                    ORDER BY member_id, question_index
                """),
                {"iid": instance_id},
            ).fetchall()
        return [
            AnswerRecord(
                instance_id=str(r[0]),
                member_id=str(r[1]),
                question_index=r[2],
                text=r[3],
                submitted_at=parse_datetime(r[4]),
            )
            for r in rows
        ]
