"""SQLite Database Storage Module for Recall.

This module provides the database interface for the focus-event timeline. It
manages SQLite connections, owns schema initialization and migration, and
provides the read and write primitives used by the sampler, the query engine
and the web interface.

The database schema stores:
- Focus events (UTC timestamp, application name, window title, optional tag)
- An FTS5 shadow index over app and title, kept in sync by triggers
- A key/value settings table (blacklist, recent searches)

Key Features:
- Schema initialization re-run on every connection (first-run safe)
- Context manager for short-lived connection handling
- Fixed-width UTC timestamps so string comparison is time comparison
- Rows that cannot be decoded are dropped instead of failing a whole read

Database Schema:
    events table:
        - id: Primary key (autoincrement)
        - timestamp: UTC time as YYYY-MM-DDTHH:MM:SSZ (indexed)
        - app: Foreground application name (indexed)
        - title: Window title (may be empty)
        - tags: Free-text annotation (optional)

    events_fts table:
        - FTS5 index on (app, title), content-linked to events.id

    config table:
        - key / value string pairs

Example:
    >>> storage = EventStore()
    >>> event_id = storage.insert_event("Firefox", "Recall - Docs")
    >>> events = storage.get_events_in_range(start, end)
"""

import json
import logging
import os
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Optional

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")

BLACKLIST_KEY = "blacklist"
RECENT_SEARCHES_KEY = "recent_searches"
MAX_RECENT_SEARCHES = 10

_EVENT_COLUMNS = "id, timestamp, app, title, tags"


@dataclass
class Event:
    """One recorded focus-change observation."""
    id: int
    timestamp: str
    app: str
    title: str
    tags: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class AppStats:
    """Usage summary for a single application."""
    app: str
    count: int
    first_seen: str
    last_seen: str

    def to_dict(self) -> Dict:
        return asdict(self)


def format_timestamp(dt: datetime) -> str:
    """Convert a datetime to the storage timestamp format.

    Naive datetimes are treated as UTC. Sub-second precision is dropped.

    Args:
        dt: Datetime to convert.

    Returns:
        String like '2024-01-15T12:00:00Z'.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a storage timestamp back into an aware UTC datetime."""
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def default_data_dir() -> Path:
    """Per-user application data directory for the database file."""
    base = os.environ.get("XDG_DATA_HOME")
    if base:
        return Path(base) / "recall"
    return Path.home() / ".local" / "share" / "recall"


def _row_to_event(row: sqlite3.Row) -> Event:
    tags = row["tags"]
    if tags is not None and not isinstance(tags, str):
        raise TypeError(f"tags must be text, got {type(tags).__name__}")
    for column in ("timestamp", "app", "title"):
        if not isinstance(row[column], str):
            raise TypeError(f"{column} must be text, got {type(row[column]).__name__}")
    return Event(
        id=int(row["id"]),
        timestamp=row["timestamp"],
        app=row["app"],
        title=row["title"],
        tags=tags,
    )


def _rows_to_events(rows) -> List[Event]:
    """Map rows to events, skipping any row that does not decode."""
    events = []
    for row in rows:
        try:
            events.append(_row_to_event(row))
        except (TypeError, ValueError, KeyError) as e:
            logger.debug(f"Skipping undecodable event row: {e}")
    return events


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class EventStore:
    """SQLite database interface for the Recall focus-event timeline.

    Every public method opens its own connection through get_connection(),
    which re-runs the idempotent schema setup before yielding. No connection
    is held between calls.

    Attributes:
        db_path (str): Absolute path to the SQLite database file

    Example:
        >>> storage = EventStore("/tmp/memory.db")
        >>> storage.insert_event("Terminal", "vim notes.md")
        1
        >>> storage.get_statistics()[0].app
        'Terminal'
    """

    def __init__(self, db_path: str = None):
        """Initialize EventStore.

        The database file itself is not opened until the first operation.

        Args:
            db_path (str, optional): Path to SQLite database file. If None,
                uses memory.db inside default_data_dir().

        Raises:
            RuntimeError: If the data directory cannot be created
        """
        if db_path is None:
            db_path = default_data_dir() / "memory.db"

        data_dir = Path(db_path).expanduser().parent
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RuntimeError(f"Cannot create data directory {data_dir}: {e}") from e

        self.db_path = str(Path(db_path).expanduser())

    @contextmanager
    def get_connection(self):
        """Context manager for SQLite database connections.

        Opens a fresh connection with Row factory enabled, makes sure the
        schema exists, and closes the connection on exit.

        Yields:
            sqlite3.Connection: Database connection with Row factory enabled

        Raises:
            RuntimeError: If the database cannot be opened or the schema
                cannot be created
        """
        try:
            conn = sqlite3.connect(self.db_path)
        except (sqlite3.OperationalError, PermissionError) as e:
            raise RuntimeError(f"Database access error for {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            try:
                self._create_schema(conn)
            except (sqlite3.OperationalError, sqlite3.DatabaseError) as e:
                raise RuntimeError(f"Database access error for {self.db_path}: {e}") from e
            yield conn
        finally:
            conn.close()

    def init_db(self):
        """Initialize the database schema.

        Safe to call any number of times. The sampler calls it once at startup
        so that an unusable database stops sampling before the loop begins.

        Raises:
            RuntimeError: If database access or table creation fails
        """
        with self.get_connection():
            pass

    def _create_schema(self, conn: sqlite3.Connection):
        """Create tables, search index, triggers and indexes if absent."""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                app TEXT NOT NULL,
                title TEXT NOT NULL,
                tags TEXT
            )
        """)

        # Databases created before tagging existed
        try:
            conn.execute("ALTER TABLE events ADD COLUMN tags TEXT")
        except sqlite3.OperationalError:
            pass  # Column already exists

        fts_exists = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'events_fts'"
        ).fetchone()

        conn.execute("""
            CREATE VIRTUAL TABLE IF NOT EXISTS events_fts USING fts5(
                app, title, content='events', content_rowid='id'
            )
        """)

        # Index rows that predate the search table
        if not fts_exists:
            conn.execute("INSERT INTO events_fts(events_fts) VALUES ('rebuild')")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

        optional_statements = [
            """
            CREATE TRIGGER IF NOT EXISTS events_ai AFTER INSERT ON events BEGIN
                INSERT INTO events_fts(rowid, app, title)
                VALUES (new.id, new.app, new.title);
            END
            """,
            """
            CREATE TRIGGER IF NOT EXISTS events_ad AFTER DELETE ON events BEGIN
                INSERT INTO events_fts(events_fts, rowid, app, title)
                VALUES ('delete', old.id, old.app, old.title);
            END
            """,
            """
            CREATE TRIGGER IF NOT EXISTS events_au AFTER UPDATE ON events BEGIN
                INSERT INTO events_fts(events_fts, rowid, app, title)
                VALUES ('delete', old.id, old.app, old.title);
                INSERT INTO events_fts(rowid, app, title)
                VALUES (new.id, new.app, new.title);
            END
            """,
            "CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events(timestamp)",
            "CREATE INDEX IF NOT EXISTS idx_events_app ON events(app)",
        ]
        for stmt in optional_statements:
            try:
                conn.execute(stmt)
            except sqlite3.OperationalError as e:
                logger.debug(f"Ignoring schema statement failure: {e}")

        conn.commit()

    def rebuild_search_index(self) -> None:
        """Reconstruct the full-text index from the events table."""
        with self.get_connection() as conn:
            conn.execute("INSERT INTO events_fts(events_fts) VALUES ('rebuild')")
            conn.commit()

    # ── Event writes ─────────────────────────────────────────

    def insert_event(self, app: str, title: str, timestamp: str = None) -> int:
        """Append a focus event.

        Args:
            app: Foreground application name.
            title: Window title (may be empty).
            timestamp: Storage-format UTC timestamp. Defaults to now.

        Returns:
            Database ID of the inserted event.

        Raises:
            ValueError: If timestamp is not in the storage format
            RuntimeError: If database connection fails
        """
        if timestamp is None:
            timestamp = format_timestamp(datetime.now(timezone.utc))
        elif not _TIMESTAMP_RE.match(timestamp):
            raise ValueError(f"Timestamp must look like 2024-01-15T12:00:00Z, got {timestamp!r}")

        with self.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO events (timestamp, app, title) VALUES (?, ?, ?)",
                (timestamp, app, title)
            )
            conn.commit()
            return cursor.lastrowid

    def add_tag(self, event_id: int, tag: str) -> bool:
        """Set the tag on an event, replacing any existing tag.

        Returns:
            True if the event exists, False otherwise.
        """
        with self.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE events SET tags = ? WHERE id = ?",
                (tag, event_id)
            )
            conn.commit()
            return cursor.rowcount > 0

    # ── Event reads ──────────────────────────────────────────

    def get_event(self, event_id: int) -> Optional[Event]:
        with self.get_connection() as conn:
            row = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE id = ?",
                (event_id,)
            ).fetchone()
        events = _rows_to_events([row]) if row else []
        return events[0] if events else None

    def get_latest_event(self) -> Optional[Event]:
        with self.get_connection() as conn:
            row = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events ORDER BY id DESC LIMIT 1"
            ).fetchone()
        events = _rows_to_events([row]) if row else []
        return events[0] if events else None

    def count_events(self) -> int:
        with self.get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]

    def find_latest_matching(self, text: str) -> Optional[int]:
        """Find the most recent event whose app or title contains text.

        Matching is a case-insensitive substring match.

        Returns:
            ID of the matching event, or None.
        """
        pattern = f"%{_escape_like(text)}%"
        with self.get_connection() as conn:
            row = conn.execute(
                """
                SELECT id FROM events
                WHERE app LIKE ? ESCAPE '\\' OR title LIKE ? ESCAPE '\\'
                ORDER BY id DESC
                LIMIT 1
                """,
                (pattern, pattern)
            ).fetchone()
        return row["id"] if row else None

    def get_events_after_id(self, event_id: int, limit: int = 50) -> List[Event]:
        """Get events recorded after event_id, oldest first."""
        with self.get_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_EVENT_COLUMNS} FROM events
                WHERE id > ?
                ORDER BY id ASC
                LIMIT ?
                """,
                (event_id, limit)
            ).fetchall()
        return _rows_to_events(rows)

    def get_events_in_range(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: Optional[int] = 100,
        newest_first: bool = True
    ) -> List[Event]:
        """Get events whose timestamp lies in a range.

        Args:
            start: Inclusive lower bound (storage format), None for open.
            end: Inclusive upper bound (storage format), None for open.
            limit: Maximum rows, None for no cap.
            newest_first: Order by descending id if True, ascending otherwise.

        Returns:
            List of Event objects.
        """
        clauses = []
        params: list = []
        if start is not None:
            clauses.append("timestamp >= ?")
            params.append(start)
        if end is not None:
            clauses.append("timestamp <= ?")
            params.append(end)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        order = "DESC" if newest_first else "ASC"
        limit_sql = ""
        if limit is not None:
            limit_sql = "LIMIT ?"
            params.append(limit)

        with self.get_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_EVENT_COLUMNS} FROM events
                {where}
                ORDER BY id {order}
                {limit_sql}
                """,
                params
            ).fetchall()
        return _rows_to_events(rows)

    def search_full_text(self, match_expression: str, limit: int = 100) -> List[Event]:
        """Run an FTS5 MATCH over app and title, newest first.

        Raises:
            sqlite3.OperationalError: If the match expression is malformed
        """
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT e.id, e.timestamp, e.app, e.title, e.tags
                FROM events e
                JOIN events_fts ON events_fts.rowid = e.id
                WHERE events_fts MATCH ?
                ORDER BY e.id DESC
                LIMIT ?
                """,
                (match_expression, limit)
            ).fetchall()
        return _rows_to_events(rows)

    def get_statistics(self, limit: int = 20) -> List[AppStats]:
        """Aggregate event count and first/last seen time per application.

        Returns:
            List of AppStats sorted by count descending.
        """
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT
                    app,
                    COUNT(*) as count,
                    MIN(timestamp) as first_seen,
                    MAX(timestamp) as last_seen
                FROM events
                GROUP BY app
                ORDER BY count DESC, app ASC
                LIMIT ?
                """,
                (limit,)
            ).fetchall()

        stats = []
        for row in rows:
            try:
                stats.append(AppStats(
                    app=row["app"],
                    count=int(row["count"]),
                    first_seen=row["first_seen"],
                    last_seen=row["last_seen"],
                ))
            except (TypeError, ValueError) as e:
                logger.debug(f"Skipping undecodable statistics row: {e}")
        return stats

    # ── Settings ─────────────────────────────────────────────

    def get_setting(self, key: str) -> Optional[str]:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM config WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        with self.get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)",
                (key, value)
            )
            conn.commit()

    def _get_string_list(self, key: str) -> List[str]:
        raw = self.get_setting(key)
        if raw is None:
            return []
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring malformed '{key}' setting")
            return []
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]

    def get_blacklist(self) -> List[str]:
        """Application-name substrings that must never be recorded."""
        return self._get_string_list(BLACKLIST_KEY)

    def set_blacklist(self, blacklist: List[str]) -> None:
        self.set_setting(BLACKLIST_KEY, json.dumps(list(blacklist)))

    def get_recent_searches(self) -> List[str]:
        """Recent search strings, most recent first."""
        return self._get_string_list(RECENT_SEARCHES_KEY)

    def save_recent_search(self, query: str) -> List[str]:
        """Move query to the front of the recent list.

        Any earlier identical entry is removed and the list is truncated to
        MAX_RECENT_SEARCHES entries.

        Returns:
            The updated list.
        """
        recent = [q for q in self.get_recent_searches() if q != query]
        recent.insert(0, query)
        recent = recent[:MAX_RECENT_SEARCHES]
        self.set_setting(RECENT_SEARCHES_KEY, json.dumps(recent))
        return recent
