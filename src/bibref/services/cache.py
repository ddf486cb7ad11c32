"""Local persistent cache for fetched bibliographic entries.

The cache is an optimization only: every failure is logged and turned into
a miss (reads) or a ``False`` result (writes).
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError

from bibref.models import CacheRecord, dump_entry, parse_entry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_expiry(
    now: datetime,
    ttl_seconds: float,
    expires_header: Optional[datetime] = None,
) -> datetime:
    """Stamp for a freshly fetched batch: ``ttl_seconds`` from now, or earlier if the source says so."""
    expires_at = now + timedelta(seconds=ttl_seconds)
    if expires_header is not None and expires_header < expires_at:
        return expires_header
    return expires_at


class BiblioCache:
    """SQLite-backed ``find`` / ``add_all`` gateway with per-record expiry."""

    def __init__(self, db_path: str | Path, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._lock = RLock()
        self._conn: Optional[sqlite3.Connection] = None
        try:
            path = Path(db_path)
            if str(db_path) != ":memory:":
                path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.execute(
                "CREATE TABLE IF NOT EXISTS biblio ("
                "  key        TEXT PRIMARY KEY,"
                "  data       TEXT NOT NULL,"
                "  expires_at REAL NOT NULL"
                ")"
            )
            conn.commit()
            self._conn = conn
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Bibliography cache unavailable, every lookup will miss: %s", exc)

    @property
    def available(self) -> bool:
        return self._conn is not None

    def find(self, key: str) -> Optional[CacheRecord]:
        """Return the fresh record for ``key``; expired, absent or unreadable records are ``None``."""
        if self._conn is None:
            return None
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT data, expires_at FROM biblio WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as exc:
            logger.warning("Bibliography cache read failed for %s: %s", key, exc)
            return None
        if row is None:
            return None

        data, expires_ts = row
        expires_at = datetime.fromtimestamp(expires_ts, tz=timezone.utc)
        try:
            record = CacheRecord(key=key, data=parse_entry(key, json.loads(data)), expires_at=expires_at)
        except (ValueError, ValidationError) as exc:
            logger.warning("Discarding corrupt cache record for %s: %s", key, exc)
            return None
        if not record.is_fresh(self._clock()):
            logger.debug("Cache record for %s expired at %s", key, expires_at.isoformat())
            return None
        return record

    def add_all(self, entries: Mapping[str, Any], expires_at: datetime) -> bool:
        """Upsert ``entries`` in one transaction, all stamped with ``expires_at``."""
        if self._conn is None:
            return False
        try:
            rows = [
                (key, json.dumps(dump_entry(parse_entry(key, value))), expires_at.timestamp())
                for key, value in entries.items()
            ]
        except (ValueError, ValidationError) as exc:
            logger.error("Refusing to cache malformed entries: %s", exc)
            return False
        try:
            with self._lock, self._conn:
                self._conn.executemany(
                    "INSERT OR REPLACE INTO biblio (key, data, expires_at) VALUES (?, ?, ?)",
                    rows,
                )
        except sqlite3.Error as exc:
            logger.error("Bibliography cache write failed: %s", exc)
            return False
        logger.debug("Cached %d entries until %s", len(rows), expires_at.isoformat())
        return True

    def purge_expired(self) -> int:
        if self._conn is None:
            return 0
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM biblio WHERE expires_at <= ?", (self._clock().timestamp(),)
                )
        except sqlite3.Error as exc:
            logger.error("Bibliography cache purge failed: %s", exc)
            return 0
        return cursor.rowcount

    def clear(self) -> None:
        if self._conn is None:
            return
        try:
            with self._lock, self._conn:
                self._conn.execute("DELETE FROM biblio")
        except sqlite3.Error as exc:
            logger.error("Bibliography cache clear failed: %s", exc)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


class NullCache:
    """Cache stand-in used when caching is switched off."""

    available = False

    def find(self, key: str) -> Optional[CacheRecord]:
        return None

    def add_all(self, entries: Mapping[str, Any], expires_at: datetime) -> bool:
        return False
