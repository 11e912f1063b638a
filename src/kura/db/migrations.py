"""Database migrations and schema management for Kura."""

from kura.db.connection import Database

# Schema version for tracking migrations
SCHEMA_VERSION = 2

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now')),
    description TEXT
);

-- Captured content metadata
-- Files live in storage; this table holds what search filters and displays
CREATE TABLE IF NOT EXISTS content (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,  -- Owner; every read is scoped to it
    file_path TEXT NOT NULL,  -- Path in storage (relative)
    content_type TEXT NOT NULL,  -- 'text', 'image', 'pdf', 'audio'
    title TEXT,
    source TEXT,  -- 'ios-shortcut', 'web', 'api'
    tags TEXT,  -- JSON array: '["tag1","tag2"]'
    annotation TEXT,  -- User-provided context
    extracted_text TEXT,  -- Text content for search and display
    embedding_status TEXT NOT NULL DEFAULT 'pending',  -- 'pending', 'completed', 'failed'
    thumbnail_path TEXT,
    image_metadata TEXT,  -- JSON
    pdf_metadata TEXT,  -- JSON
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Full-text index over the content table (external content, synced by triggers)
CREATE VIRTUAL TABLE IF NOT EXISTS content_fts USING fts5(
    title,
    annotation,
    extracted_text,
    content='content',
    content_rowid='rowid'
);

CREATE TRIGGER IF NOT EXISTS content_ai AFTER INSERT ON content BEGIN
    INSERT INTO content_fts(rowid, title, annotation, extracted_text)
    VALUES (new.rowid, new.title, new.annotation, new.extracted_text);
END;

CREATE TRIGGER IF NOT EXISTS content_ad AFTER DELETE ON content BEGIN
    INSERT INTO content_fts(content_fts, rowid, title, annotation, extracted_text)
    VALUES ('delete', old.rowid, old.title, old.annotation, old.extracted_text);
END;

CREATE TRIGGER IF NOT EXISTS content_au AFTER UPDATE ON content BEGIN
    INSERT INTO content_fts(content_fts, rowid, title, annotation, extracted_text)
    VALUES ('delete', old.rowid, old.title, old.annotation, old.extracted_text);
    INSERT INTO content_fts(rowid, title, annotation, extracted_text)
    VALUES (new.rowid, new.title, new.annotation, new.extracted_text);
END;

-- Served searches, written by the query log
CREATE TABLE IF NOT EXISTS search_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    query TEXT NOT NULL,
    results_count INTEGER NOT NULL DEFAULT 0,
    owner_id TEXT,
    method TEXT,  -- 'vector', 'fts', 'combined'
    elapsed_ms INTEGER,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_content_user_id ON content(user_id);
CREATE INDEX IF NOT EXISTS idx_content_type ON content(content_type);
CREATE INDEX IF NOT EXISTS idx_content_created_at ON content(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_search_history_created_at ON search_history(created_at DESC);
"""

# Version 2 columns added to search_history
_HISTORY_V2_COLUMNS = {
    "owner_id": "TEXT",
    "method": "TEXT",
    "elapsed_ms": "INTEGER",
}


def _columns(db: Database, table: str) -> set[str]:
    return {row["name"] for row in db.fetchall(f"PRAGMA table_info({table})")}


def run_migrations(db: Database) -> None:
    """Run database migrations to set up or upgrade schema.

    Args:
        db: Database connection to run migrations on.
    """
    tables = {
        row["name"] for row in db.fetchall("SELECT name FROM sqlite_master WHERE type = 'table'")
    }
    current_version = 0
    if "schema_version" in tables:
        result = db.execute("SELECT MAX(version) FROM schema_version").fetchone()
        current_version = result[0] or 0

    if current_version >= SCHEMA_VERSION:
        return

    # Version 2 migration: search_history gains owner, method and timing.
    # CREATE TABLE IF NOT EXISTS won't alter an existing table, so add columns first
    if "search_history" in tables:
        existing = _columns(db, "search_history")
        for column, column_type in _HISTORY_V2_COLUMNS.items():
            if column not in existing:
                db.execute(f"ALTER TABLE search_history ADD COLUMN {column} {column_type}")
        db.commit()

    # executescript auto-commits, so the version insert is handled separately
    db.executescript(SCHEMA_SQL)

    db.execute(
        "INSERT OR REPLACE INTO schema_version (version, description) VALUES (?, ?)",
        (SCHEMA_VERSION, "Owner-scoped search history with method and timing"),
    )
    db.commit()
