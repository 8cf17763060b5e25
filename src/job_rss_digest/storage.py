from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from functools import wraps
from pathlib import Path
from typing import Callable, Iterable, TypeVar

from job_rss_digest.domain import STATUS_ACCEPTED, ScoredListing

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS listings (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    found_at TEXT NOT NULL,
    title TEXT NOT NULL,
    organization TEXT NOT NULL,
    location TEXT NOT NULL,
    link TEXT NOT NULL,
    dedup_key TEXT NOT NULL UNIQUE,
    source TEXT NOT NULL,
    snippet TEXT NOT NULL,
    score NUMERIC NOT NULL,
    matched_keywords TEXT NOT NULL,
    status TEXT NOT NULL,
    notified_at TEXT NULL
);

CREATE INDEX IF NOT EXISTS idx_listings_unnotified
    ON listings (status, notified_at);

CREATE TABLE IF NOT EXISTS run_lock (
    name TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    acquired_at TEXT NOT NULL
);
"""

RUN_LOCK_NAME = "pipeline"

T = TypeVar("T")


class PersistenceError(RuntimeError):
    """Raised when the backing store cannot be read or written."""


def _wrap_sqlite_errors(func: Callable[..., T]) -> Callable[..., T]:
    @wraps(func)
    def wrapper(*args, **kwargs):  # type: ignore[no-untyped-def]
        try:
            return func(*args, **kwargs)
        except sqlite3.Error as exc:
            raise PersistenceError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


def _row_to_listing(row: sqlite3.Row) -> ScoredListing:
    return ScoredListing(
        identifier=str(row["id"]),
        found_at=datetime.fromisoformat(row["found_at"]),
        title=row["title"],
        organization=row["organization"],
        location=row["location"],
        link=row["link"],
        source=row["source"],
        snippet=row["snippet"],
        score=row["score"],
        matched_keywords=tuple(json.loads(row["matched_keywords"])),
        status=row["status"],
        dedup_key=row["dedup_key"],
        notified_at=row["notified_at"],
    )


class SQLiteStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.connection = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"cannot open {self.db_path}: {exc}") from exc
        self.connection.row_factory = sqlite3.Row

    def close(self) -> None:
        self.connection.close()

    @_wrap_sqlite_errors
    def initialize(self) -> None:
        with self.connection:
            self.connection.executescript(SCHEMA_SQL)

    @_wrap_sqlite_errors
    def load_existing_keys(self) -> set[str]:
        rows = self.connection.execute("SELECT dedup_key FROM listings").fetchall()
        return {str(row["dedup_key"]) for row in rows}

    @_wrap_sqlite_errors
    def append_scored_listings(self, listings: Iterable[ScoredListing]) -> int:
        payload = [
            (
                listing.identifier,
                listing.found_at.isoformat(),
                listing.title,
                listing.organization,
                listing.location,
                listing.link,
                listing.dedup_key,
                listing.source,
                listing.snippet,
                listing.score,
                json.dumps(list(listing.matched_keywords), ensure_ascii=False),
                listing.status,
                listing.notified_at,
            )
            for listing in listings
        ]
        if not payload:
            return 0
        before = self.connection.total_changes
        with self.connection:
            # Only a known dedup_key is skipped; an id clash raises.
            self.connection.executemany(
                """
                INSERT INTO listings (
                    id, found_at, title, organization, location, link, dedup_key,
                    source, snippet, score, matched_keywords, status, notified_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(dedup_key) DO NOTHING
                """,
                payload,
            )
        return self.connection.total_changes - before

    @_wrap_sqlite_errors
    def load_unnotified(self, min_score: int | float) -> list[ScoredListing]:
        rows = self.connection.execute(
            """
            SELECT *
            FROM listings
            WHERE status = ?
              AND score >= ?
              AND (notified_at IS NULL OR notified_at = '')
            ORDER BY seq ASC
            """,
            (STATUS_ACCEPTED, min_score),
        ).fetchall()
        return [_row_to_listing(row) for row in rows]

    @_wrap_sqlite_errors
    def mark_notified(self, ids: Iterable[str], notified_at: str) -> int:
        id_list = list(dict.fromkeys(ids))
        if not id_list:
            return 0
        if not notified_at:
            raise ValueError("notified_at must be non-empty")
        before = self.connection.total_changes
        with self.connection:
            self.connection.executemany(
                """
                UPDATE listings
                SET notified_at = ?
                WHERE id = ?
                  AND (notified_at IS NULL OR notified_at = '')
                """,
                [(notified_at, listing_id) for listing_id in id_list],
            )
        return self.connection.total_changes - before

    @_wrap_sqlite_errors
    def acquire_run_lock(
        self,
        owner: str,
        *,
        stale_after: timedelta = timedelta(hours=1),
        now: datetime | None = None,
    ) -> None:
        current = now or datetime.now(timezone.utc)
        cutoff = (current - stale_after).isoformat()
        with self.connection:
            self.connection.execute(
                "DELETE FROM run_lock WHERE name = ? AND acquired_at < ?",
                (RUN_LOCK_NAME, cutoff),
            )
            cursor = self.connection.execute(
                "INSERT OR IGNORE INTO run_lock (name, owner, acquired_at) VALUES (?, ?, ?)",
                (RUN_LOCK_NAME, owner, current.isoformat()),
            )
        if cursor.rowcount == 0:
            row = self.connection.execute(
                "SELECT owner, acquired_at FROM run_lock WHERE name = ?",
                (RUN_LOCK_NAME,),
            ).fetchone()
            holder = f"{row['owner']} since {row['acquired_at']}" if row else "unknown"
            raise PersistenceError(f"another run holds the lock: {holder}")

    @_wrap_sqlite_errors
    def release_run_lock(self, owner: str) -> None:
        with self.connection:
            self.connection.execute(
                "DELETE FROM run_lock WHERE name = ? AND owner = ?",
                (RUN_LOCK_NAME, owner),
            )
