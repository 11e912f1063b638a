"""Content metadata lookups for search."""

import asyncio
import json
import logging
import sqlite3
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from kura.db.connection import Database
from kura.search.schemas import ContentRecord, ContentType, DocumentAttributes, as_utc

logger = logging.getLogger(__name__)

# SQLite caps bound parameters per statement
_BATCH_SIZE = 500


def parse_tags(raw: str | None) -> tuple[str, ...]:
    """Decode the JSON tags column, tolerating NULL and malformed values."""
    if not raw:
        return ()
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring malformed tags value: {raw!r}")
        return ()
    if not isinstance(value, list):
        return ()
    return tuple(str(tag) for tag in value)


def parse_timestamp(raw: str) -> datetime:
    """Parse a stored timestamp (ISO or SQLite datetime()) as UTC."""
    return as_utc(datetime.fromisoformat(raw))


def uses_annotation(content_type: ContentType, row: sqlite3.Row) -> bool:
    """Images and PDFs with a non-blank annotation are excerpted from it alone."""
    annotation = row["annotation"]
    return content_type in (ContentType.IMAGE, ContentType.PDF) and bool(
        annotation and annotation.strip()
    )


def excerpt_source(content_type: ContentType, row: sqlite3.Row) -> str:
    """Text to cut the excerpt from.

    Images and PDFs prefer the annotation; everything else combines title,
    annotation and extracted text.
    """
    if uses_annotation(content_type, row):
        return row["annotation"]
    parts = [row["title"], row["annotation"], row["extracted_text"]]
    return " ".join(part for part in parts if part)


class SqliteContentStore:
    """Metadata store over the content table."""

    def __init__(self, db: Database):
        self._db = db

    async def get_attributes(self, ids: Sequence[str]) -> list[DocumentAttributes]:
        """Fetch filter and tie-break columns for ids. Unknown ids are omitted."""
        rows = await asyncio.to_thread(
            self._select, "id, user_id, content_type, tags, created_at", ids
        )
        return [
            DocumentAttributes(
                id=row["id"],
                content_type=ContentType(row["content_type"]),
                tags=frozenset(parse_tags(row["tags"])),
                created_at=parse_timestamp(row["created_at"]),
                owner_id=row["user_id"],
            )
            for row in rows
        ]

    async def get_by_ids(self, ids: Sequence[str]) -> list[ContentRecord]:
        """Fetch display fields for ids. Unknown ids are omitted."""
        rows = await asyncio.to_thread(
            self._select,
            "id, user_id, content_type, title, tags, annotation, extracted_text, created_at",
            ids,
        )
        records = []
        for row in rows:
            content_type = ContentType(row["content_type"])
            records.append(
                ContentRecord(
                    id=row["id"],
                    title=row["title"],
                    content_type=content_type,
                    tags=parse_tags(row["tags"]),
                    created_at=parse_timestamp(row["created_at"]),
                    excerpt_source=excerpt_source(content_type, row),
                    owner_id=row["user_id"],
                    excerpt_is_annotation=uses_annotation(content_type, row),
                )
            )
        return records

    def insert(
        self,
        content_id: str,
        owner_id: str,
        content_type: ContentType,
        file_path: str = "",
        title: str | None = None,
        tags: Sequence[str] = (),
        annotation: str | None = None,
        extracted_text: str | None = None,
        created_at: datetime | None = None,
        **extra: Any,
    ) -> None:
        """Insert one content row. The full-text index follows via triggers."""
        columns = {
            "id": content_id,
            "user_id": owner_id,
            "file_path": file_path,
            "content_type": content_type.value,
            "title": title,
            "tags": json.dumps(list(tags)),
            "annotation": annotation,
            "extracted_text": extracted_text,
            **extra,
        }
        if created_at is not None:
            columns["created_at"] = as_utc(created_at).isoformat()
        names = ", ".join(columns)
        placeholders = ", ".join("?" for _ in columns)
        self._db.execute(
            f"INSERT INTO content ({names}) VALUES ({placeholders})", tuple(columns.values())
        )
        self._db.commit()

    def _select(self, columns: str, ids: Sequence[str]) -> list[sqlite3.Row]:
        unique = list(dict.fromkeys(ids))
        rows: list[sqlite3.Row] = []
        for start in range(0, len(unique), _BATCH_SIZE):
            batch = unique[start : start + _BATCH_SIZE]
            placeholders = ", ".join("?" for _ in batch)
            rows.extend(
                self._db.fetchall(
                    f"SELECT {columns} FROM content WHERE id IN ({placeholders})",
                    tuple(batch),
                )
            )
        return rows
