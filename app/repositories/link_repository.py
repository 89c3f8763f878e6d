# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: external workspace → organization links.

Writes are compare-and-set against the state the caller last read, so two
concurrent link commands cannot both win.
"""
from datetime import datetime

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from app.core.clock import to_db
from app.models.domain import LinkState, Linked, Unlinked


def _org_of(state: LinkState):
    return state.org_id if isinstance(state, Linked) else None


class LinkRepository:
    def __init__(self, engine: Engine):
        self._engine = engine

    def get(self, workspace_id: str) -> LinkState:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT org_id FROM workspace_links WHERE workspace_id = :ws"),
                {"ws": workspace_id},
            ).fetchone()
        if row is None or row[0] is None:
            return Unlinked()
        return Linked(org_id=str(row[0]))

    def compare_and_set(self, workspace_id: str, expected: LinkState,
                        new: LinkState, now: datetime) -> bool:
        params = {
            "ws": workspace_id,
            "expected": _org_of(expected),
            "new": _org_of(new),
            "now": to_db(now),
        }
        try:
            with self._engine.begin() as conn:
                if isinstance(expected, Linked):
                    result = conn.execute(
                        text("""
                            UPDATE workspace_links SET org_id = :new, updated_at = :now
                            WHERE workspace_id = :ws AND org_id = :expected
                        """),
                        params,
                    )
                    return result.rowcount == 1

                result = conn.execute(
                    text("""
                        UPDATE workspace_links SET org_id = :new, updated_at = :now
                        WHERE workspace_id = :ws AND org_id IS NULL
                    """),
                    params,
                )
                if result.rowcount == 1:
                    return True
                # never seen before: the primary key arbitrates concurrent first links
                conn.execute(
                    text("""
                        INSERT INTO workspace_links (workspace_id, org_id, updated_at)
                        VALUES (:ws, :new, :now)
                    """),
                    params,
                )
                return True
        except IntegrityError:
            return False
