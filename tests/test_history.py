"""Search history store tests."""

from datetime import datetime, timedelta, timezone

from kura.db.history import SearchHistoryStore
from kura.search.query_log import QueryLogEntry

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def entry(query, owner_id="alice", minutes=0, method="combined"):
    return QueryLogEntry(
        query=query,
        result_count=3,
        method=method,
        elapsed_ms=42,
        owner_id=owner_id,
        timestamp=NOW + timedelta(minutes=minutes),
    )


def test_recent_returns_newest_first(temp_db):
    history = SearchHistoryStore(temp_db)
    history.write(entry("first", minutes=0))
    history.write(entry("second", minutes=5, method="fts"))

    recent = history.recent("alice")

    assert [r["query"] for r in recent] == ["second", "first"]
    assert recent[0]["method"] == "fts"
    assert recent[0]["elapsed_ms"] == 42
    assert recent[0]["created_at"] == NOW + timedelta(minutes=5)


def test_recent_is_owner_scoped(temp_db):
    history = SearchHistoryStore(temp_db)
    history.write(entry("alice query"))
    history.write(entry("bob query", owner_id="bob"))

    assert [r["query"] for r in history.recent("bob")] == ["bob query"]


def test_recent_respects_limit(temp_db):
    history = SearchHistoryStore(temp_db)
    for i in range(5):
        history.write(entry(f"q{i}", minutes=i))

    assert [r["query"] for r in history.recent("alice", limit=2)] == ["q4", "q3"]
