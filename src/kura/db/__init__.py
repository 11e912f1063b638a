"""Database layer for Kura."""

from kura.db.connection import Database
from kura.db.migrations import run_migrations

__all__ = ["Database", "run_migrations"]
