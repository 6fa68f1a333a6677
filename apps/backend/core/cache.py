"""
Key/value cache with TTL, shared by the politeness layer and HTML fetcher.

Counters kept here (rate limits, token windows) are approximate: concurrent
read-modify-write from several pipelines may lose an update, which is fine
for soft limits.
"""
import json
import time
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

import psycopg2
from psycopg2.extras import RealDictCursor

logger = logging.getLogger(__name__)


class Cache(ABC):
    """Minimal cache contract: get / set with TTL / delete.

    A TTL of None never expires; a TTL of zero or less stores nothing.
    """

    @abstractmethod
    def get(self, key: str) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class InMemoryCache(Cache):
    """Process-local cache. The clock is injectable so tests never sleep."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}

    def get(self, key: str) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if ttl is not None and ttl <= 0:
            self.delete(key)
            return
        expires_at = self.clock() + ttl if ttl is not None else None
        self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class PostgresCache(Cache):
    """Cache backed by a cache_entries table, shared across workers."""

    SCHEMA_SQL = """
        CREATE TABLE IF NOT EXISTS cache_entries (
            key TEXT PRIMARY KEY,
            value JSONB,
            expires_at TIMESTAMP NULL
        )
    """

    def __init__(self, db_url: str):
        self.db_url = db_url

    def _get_db_conn(self):
        """Get database connection"""
        return psycopg2.connect(self.db_url)

    def get(self, key: str) -> Any:
        conn = None
        try:
            conn = self._get_db_conn()
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT value FROM cache_entries
                    WHERE key = %s
                    AND (expires_at IS NULL OR expires_at > %s)
                """, (key, datetime.utcnow()))
                row = cur.fetchone()
                return row['value'] if row else None
        except Exception as e:
            logger.error(f"[cache] Error reading {key}: {e}")
            return None
        finally:
            if conn:
                conn.close()

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if ttl is not None and ttl <= 0:
            self.delete(key)
            return
        expires_at = datetime.utcnow() + timedelta(seconds=ttl) if ttl is not None else None
        conn = None
        try:
            conn = self._get_db_conn()
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO cache_entries (key, value, expires_at)
                    VALUES (%s, %s::JSONB, %s)
                    ON CONFLICT (key) DO UPDATE SET
                        value = EXCLUDED.value,
                        expires_at = EXCLUDED.expires_at
                """, (key, json.dumps(value), expires_at))
                conn.commit()
        except Exception as e:
            logger.error(f"[cache] Error writing {key}: {e}")
            if conn:
                conn.rollback()
        finally:
            if conn:
                conn.close()

    def delete(self, key: str) -> None:
        conn = None
        try:
            conn = self._get_db_conn()
            with conn.cursor() as cur:
                cur.execute("DELETE FROM cache_entries WHERE key = %s", (key,))
                conn.commit()
        except Exception as e:
            logger.error(f"[cache] Error deleting {key}: {e}")
        finally:
            if conn:
                conn.close()
