"""Shared fixtures for Recall tests."""

import pytest

from recall.storage import EventStore


@pytest.fixture
def store(tmp_path):
    """Event store backed by a fresh database file."""
    return EventStore(str(tmp_path / "data" / "memory.db"))


def add_events(store, rows):
    """Insert (timestamp, app, title) rows and return their ids."""
    return [store.insert_event(app, title, timestamp=ts) for ts, app, title in rows]


def fts_ids(store, token):
    """Ids the full-text index returns for a single token."""
    with store.get_connection() as conn:
        rows = conn.execute(
            "SELECT rowid FROM events_fts WHERE events_fts MATCH ? ORDER BY rowid",
            (f'"{token}"',)
        ).fetchall()
    return [row[0] for row in rows]
