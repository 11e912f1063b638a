"""Search history persistence."""

import logging
from datetime import datetime

from kura.db.connection import Database
from kura.search.query_log import QueryLogEntry

logger = logging.getLogger(__name__)


class SearchHistoryStore:
    """Query log sink backed by the search_history table."""

    def __init__(self, db: Database):
        self._db = db

    def write(self, entry: QueryLogEntry) -> None:
        """Persist one served query."""
        self._db.execute(
            """
            INSERT INTO search_history (query, results_count, owner_id, method, elapsed_ms, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                entry.query,
                entry.result_count,
                entry.owner_id,
                entry.method,
                entry.elapsed_ms,
                entry.timestamp.isoformat(),
            ),
        )
        self._db.commit()

    def recent(self, owner_id: str, limit: int = 20) -> list[dict]:
        """Return the owner's most recent searches, newest first."""
        rows = self._db.fetchall(
            """
            SELECT query, results_count, method, elapsed_ms, created_at
            FROM search_history
            WHERE owner_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (owner_id, limit),
        )
        return [
            {
                "query": row["query"],
                "results_count": row["results_count"],
                "method": row["method"],
                "elapsed_ms": row["elapsed_ms"],
                "created_at": datetime.fromisoformat(row["created_at"]),
            }
            for row in rows
        ]
