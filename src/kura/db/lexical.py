"""SQLite FTS5 lexical index."""

import asyncio
import logging
import re
import sqlite3

from kura.db.connection import Database
from kura.search.errors import LexicalIndexUnavailable
from kura.search.schemas import LexicalMatch

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def build_match_query(text: str) -> str:
    """Turn free text into an FTS5 MATCH expression.

    Each word becomes a quoted term and terms are OR'ed, so punctuation and
    FTS operators typed by the user are treated as plain text.
    """
    terms = dict.fromkeys(token.lower() for token in _TOKEN_RE.findall(text))
    return " OR ".join(f'"{term}"' for term in terms)


class SqliteLexicalIndex:
    """Full-text search over content_fts, ranked by bm25 (smaller is better)."""

    def __init__(self, db: Database):
        self._db = db

    async def query(self, text: str, k: int, owner_id: str) -> list[LexicalMatch]:
        """Return up to k best matches owned by owner_id, best first.

        Raises:
            LexicalIndexUnavailable: If SQLite fails.
        """
        match = build_match_query(text)
        if not match:
            logger.debug("Query has no searchable terms, skipping full-text search")
            return []

        try:
            rows = await asyncio.to_thread(
                self._db.fetchall,
                """
                SELECT c.id, bm25(content_fts) AS rank
                FROM content_fts
                JOIN content c ON c.rowid = content_fts.rowid
                WHERE content_fts MATCH ? AND c.user_id = ?
                ORDER BY rank, c.id
                LIMIT ?
                """,
                (match, owner_id, k),
            )
        except sqlite3.Error as e:
            raise LexicalIndexUnavailable(f"Full-text query failed: {e}") from e

        return [LexicalMatch(id=row["id"], rank=float(row["rank"])) for row in rows]
