"""Tests for the Flask JSON API."""

import csv
import io

import pytest
from dateutil import tz

from recall.query import QueryEngine
from web import app as web_app
from conftest import add_events


@pytest.fixture
def client(store):
    web_app.set_storage(store)
    web_app._engine = QueryEngine(store, local_tz=tz.UTC)
    web_app.app.config["TESTING"] = True
    with web_app.app.test_client() as client:
        yield client
    web_app._storage = None
    web_app._engine = None


@pytest.fixture
def events(store):
    return add_events(store, [
        ("2024-01-15T10:00:00Z", "Chrome", "GitHub"),
        ("2024-01-15T10:01:00Z", "Terminal", "pytest"),
        ("2024-01-15T10:02:00Z", "Chrome", "Docs"),
    ])


class TestSearchApi:

    def test_full_text_search(self, client, events):
        response = client.get("/api/search", query_string={"q": "chrome"})
        assert response.status_code == 200
        assert [e["id"] for e in response.get_json()["events"]] == [events[2], events[0]]

    def test_anchor_search(self, client, events):
        response = client.get("/api/search", query_string={"q": "after terminal"})
        assert [e["id"] for e in response.get_json()["events"]] == [events[2]]

    def test_event_shape(self, client, events):
        event = client.get("/api/search", query_string={"q": "pytest"}).get_json()["events"][0]
        assert event == {
            "id": events[1],
            "timestamp": "2024-01-15T10:01:00Z",
            "app": "Terminal",
            "title": "pytest",
            "tags": None,
        }

    def test_empty_query(self, client, events):
        response = client.get("/api/search")
        assert response.status_code == 200
        assert response.get_json() == {"events": []}

    def test_store_failure_is_reported(self, client, store, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("Database access error")
        monkeypatch.setattr(store, "search_full_text", broken)
        response = client.get("/api/search", query_string={"q": "chrome"})
        assert response.status_code == 500
        assert "Database access error" in response.get_json()["error"]


class TestOtherEndpoints:

    def test_statistics(self, client, events):
        apps = client.get("/api/statistics").get_json()["apps"]
        assert apps[0] == {
            "app": "Chrome",
            "count": 2,
            "first_seen": "2024-01-15T10:00:00Z",
            "last_seen": "2024-01-15T10:02:00Z",
        }

    def test_export(self, client, events):
        response = client.get("/api/export", query_string={"q": "chrome"})
        assert response.status_code == 200
        assert response.mimetype == "text/csv"
        assert "memory-export-" in response.headers["Content-Disposition"]
        rows = list(csv.reader(io.StringIO(response.get_data(as_text=True))))
        assert rows[0] == ["ID", "Timestamp", "App", "Title", "Tags"]
        assert len(rows) == 3

    def test_tag(self, client, store, events):
        response = client.post(f"/api/events/{events[0]}/tag", json={"tag": "review"})
        assert response.get_json() == {"success": True}
        assert store.get_event(events[0]).tags == "review"

    def test_tag_unknown_event(self, client, events):
        response = client.post("/api/events/999/tag", json={"tag": "x"})
        assert response.status_code == 404

    def test_tag_requires_body(self, client, events):
        response = client.post(f"/api/events/{events[0]}/tag", json={})
        assert response.status_code == 400

    def test_blacklist(self, client, store):
        assert client.get("/api/blacklist").get_json() == {"blacklist": []}
        response = client.put("/api/blacklist", json={"blacklist": ["keepass", "1password"]})
        assert response.status_code == 200
        assert client.get("/api/blacklist").get_json() == {"blacklist": ["keepass", "1password"]}
        assert store.get_blacklist() == ["keepass", "1password"]

    def test_blacklist_validation(self, client):
        assert client.put("/api/blacklist", json={"blacklist": "keepass"}).status_code == 400
        assert client.put("/api/blacklist", json={"blacklist": [1, 2]}).status_code == 400

    def test_recent_searches(self, client):
        for query in ["a", "b", "a", "c"]:
            client.post("/api/recent-searches", json={"query": query})
        assert client.get("/api/recent-searches").get_json() == {"searches": ["c", "a", "b"]}

    def test_timeline(self, client, events):
        response = client.get("/api/timeline/2024-01-15")
        assert response.status_code == 200
        data = response.get_json()
        assert data["date"] == "2024-01-15"
        assert [e["id"] for e in data["events"]] == events

    def test_timeline_bad_date(self, client):
        response = client.get("/api/timeline/15-01-2024")
        assert response.status_code == 400
        assert "YYYY-MM-DD" in response.get_json()["error"]

    def test_status(self, client, store, events):
        data = client.get("/api/status").get_json()
        assert data["event_count"] == 3
        assert data["latest_event"]["id"] == events[2]
        assert data["db_path"] == store.db_path
