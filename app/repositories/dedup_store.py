# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: webhook dedup registry.

``check_and_insert`` is a single atomic operation in both backends:
a primary-key insert (SQL) or ``SET NX EX`` (Redis). Records live for
``ttl_seconds`` and are then evicted, so the registry stays bounded.
"""
from datetime import timedelta
from typing import Any, Dict

import redis
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from app.core.clock import Clock, to_db, utcnow
from app.core.logging import get_logger

logger = get_logger(__name__)

REDIS_KEY_PREFIX = "slack:event:"


class SqlDedupStore:
    def __init__(self, engine: Engine, ttl_seconds: int, clock: Clock = utcnow):
        self._engine = engine
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def check_and_insert(self, event_id: str) -> bool:
        """Return True the first time ``event_id`` is seen inside the window."""
        now = self._clock()
        params = {"id": event_id, "now": to_db(now), "cutoff": to_db(now - self._ttl)}
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    text("INSERT INTO processed_events (event_id, first_seen_at) VALUES (:id, :now)"),
                    params,
                )
            return True
        except IntegrityError:
            pass
        # a row past its window that the purge has not reached yet can be reclaimed
        with self._engine.begin() as conn:
            result = conn.execute(
                text("""
                    UPDATE processed_events SET first_seen_at = :now
                    WHERE event_id = :id AND first_seen_at < :cutoff
                """),
                params,
            )
        return result.rowcount == 1

    def purge_expired(self) -> int:
        cutoff = to_db(self._clock() - self._ttl)
        with self._engine.begin() as conn:
            result = conn.execute(
                text("DELETE FROM processed_events WHERE first_seen_at < :cutoff"),
                {"cutoff": cutoff},
            )
        if result.rowcount:
            logger.info("Dedup records purged count=%d", result.rowcount)
        return result.rowcount

    def stats(self) -> Dict[str, Any]:
        with self._engine.connect() as conn:
            tracked = conn.execute(text("SELECT COUNT(*) FROM processed_events")).scalar() or 0
        return {"backend": "sql", "tracked_events": tracked,
                "ttl_seconds": int(self._ttl.total_seconds())}


class RedisDedupStore:
    def __init__(self, client, ttl_seconds: int, prefix: str = REDIS_KEY_PREFIX):
        self._redis = client
        self._ttl = ttl_seconds
        self._prefix = prefix

    def check_and_insert(self, event_id: str) -> bool:
        return bool(self._redis.set(f"{self._prefix}{event_id}", "1", nx=True, ex=self._ttl))

    def purge_expired(self) -> int:
        # keys expire server-side
        return 0

    def stats(self) -> Dict[str, Any]:
        tracked = sum(1 for _ in self._redis.scan_iter(match=f"{self._prefix}*", count=500))
        return {"backend": "redis", "tracked_events": tracked, "ttl_seconds": self._ttl}


def build_dedup_store(backend: str, engine: Engine, ttl_seconds: int, redis_url: str = ""):
    if backend == "redis":
        logger.info("Dedup store backend=redis ttl=%ds", ttl_seconds)
        return RedisDedupStore(redis.Redis.from_url(redis_url), ttl_seconds)
    logger.info("Dedup store backend=sql ttl=%ds", ttl_seconds)
    return SqlDedupStore(engine, ttl_seconds)
