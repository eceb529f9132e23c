"""
SQLite-backed thread store and analysis cache.

Tables:
  - emails: one row per analyzed thread (latest wins)
  - communications: thread <-> PO links per user
  - cache: TTL key/value entries for serialized analyses
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from collections.abc import Callable, Generator, Iterable
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

import structlog

from .metrics import analysis_cache_events_total
from .schemas import EmailData, RelatedThread, RelatedThreads

log = structlog.get_logger()

RELATED_THREADS_LIMIT = 20

SCHEMA = """
CREATE TABLE IF NOT EXISTS emails (
    thread_id TEXT PRIMARY KEY,
    sender TEXT,
    recipients TEXT,
    subject TEXT,
    body TEXT,
    is_internal INTEGER NOT NULL DEFAULT 0,
    po_number TEXT,
    user_id TEXT NOT NULL,
    timestamp TEXT
);
CREATE INDEX IF NOT EXISTS idx_emails_user ON emails(user_id);

CREATE TABLE IF NOT EXISTS communications (
    thread_id TEXT NOT NULL,
    po_number TEXT NOT NULL,
    user_id TEXT NOT NULL,
    metadata TEXT,
    PRIMARY KEY (thread_id, po_number, user_id)
);
CREATE INDEX IF NOT EXISTS idx_communications_po ON communications(po_number, user_id);

CREATE TABLE IF NOT EXISTS cache (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at REAL NOT NULL
);
"""

RELATED_THREADS_SQL = """
SELECT e.thread_id, e.subject, e.sender, e.timestamp, e.is_internal
FROM emails e
JOIN communications c ON e.thread_id = c.thread_id
WHERE c.po_number = ? AND e.user_id = ?
ORDER BY e.timestamp DESC
LIMIT ?
"""


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_internal_sender(sender: str | None, internal_domains: Iterable[str]) -> bool:
    """No address at all (a display name only) counts as internal."""
    if not sender or "@" not in sender:
        return True
    domain = sender.rsplit("@", 1)[1].strip().strip(">").lower()
    return any(domain == d.lower().lstrip("@") for d in internal_domains)


class Database:
    """
    One shared SQLite connection, serialized with a lock.

    `:memory:` works too since the connection lives as long as the object.
    """

    def __init__(self, path: str):
        self.path = path
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._lock = threading.Lock()
        self._conn.executescript(SCHEMA)

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class ThreadStore:
    def __init__(self, db: Database, *, internal_domains: Iterable[str] = ("company.com",)):
        self.db = db
        self.internal_domains = list(internal_domains)

    def related_threads(self, po_number: str | None, user_id: str) -> RelatedThreads:
        if not po_number:
            return RelatedThreads()

        try:
            with self.db.transaction() as conn:
                rows = conn.execute(RELATED_THREADS_SQL, (po_number, user_id, RELATED_THREADS_LIMIT)).fetchall()
        except sqlite3.Error as e:
            log.error("related_threads_query_failed", po_number=po_number, error=str(e))
            return RelatedThreads()

        related = RelatedThreads()
        for row in rows:
            thread = RelatedThread(
                thread_id=row["thread_id"] or "",
                subject=row["subject"] or "",
                sender=row["sender"] or "",
                timestamp=row["timestamp"] or "",
            )
            if row["is_internal"]:
                related.internal.append(thread)
            else:
                related.external.append(thread)
        return related

    def store_email(self, email: EmailData, po_number: str | None, user_id: str) -> bool:
        """Upsert the email and its PO link. Failures are logged; returns False."""
        if not email.thread_id:
            log.warning("store_email_skipped", reason="missing_thread_id")
            return False

        now = _utc_iso()
        internal = is_internal_sender(email.sender, self.internal_domains)
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO emails
                        (thread_id, sender, recipients, subject, body, is_internal, po_number, user_id, timestamp)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        email.thread_id,
                        email.sender,
                        json.dumps(email.recipients),
                        email.subject,
                        email.body,
                        1 if internal else 0,
                        po_number,
                        user_id,
                        now,
                    ),
                )
                if po_number:
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO communications (thread_id, po_number, user_id, metadata)
                        VALUES (?, ?, ?, ?)
                        """,
                        (email.thread_id, po_number, user_id, json.dumps({"extracted_at": now})),
                    )
        except sqlite3.Error as e:
            log.error("store_email_failed", thread_id=email.thread_id, error=str(e))
            return False
        return True


def cache_key(thread_id: str | None, user_id: str) -> str:
    return f"email_{thread_id}_{user_id}"


class AnalysisCache:
    def __init__(
        self,
        db: Database,
        *,
        ttl_seconds: int = 86400,
        clock: Callable[[], float] | None = None,
    ):
        self.db = db
        self.ttl_seconds = ttl_seconds
        self._clock: Callable[[], float] = clock or time.time

    def get(self, thread_id: str | None, user_id: str) -> dict[str, Any] | None:
        key = cache_key(thread_id, user_id)
        now = self._clock()
        try:
            with self.db.transaction() as conn:
                row = conn.execute("SELECT value, expires_at FROM cache WHERE key = ?", (key,)).fetchone()
                if row is not None and row["expires_at"] <= now:
                    conn.execute("DELETE FROM cache WHERE key = ?", (key,))
                    row = None
        except sqlite3.Error as e:
            log.error("analysis_cache_get_failed", key=key, error=str(e))
            return None

        if row is None:
            analysis_cache_events_total.labels(event="miss").inc()
            return None
        try:
            value = json.loads(row["value"])
        except ValueError:
            log.warning("analysis_cache_corrupt_entry", key=key)
            return None
        analysis_cache_events_total.labels(event="hit").inc()
        return value

    def put(self, thread_id: str | None, user_id: str, value: dict[str, Any]) -> None:
        key = cache_key(thread_id, user_id)
        expires_at = self._clock() + self.ttl_seconds
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO cache (key, value, expires_at) VALUES (?, ?, ?)",
                    (key, json.dumps(value), expires_at),
                )
        except sqlite3.Error as e:
            log.error("analysis_cache_put_failed", key=key, error=str(e))
