"""Database connection and schema management."""

from compound_kb.db.backend import Cursor, Database, Row
from compound_kb.db.sqlite_backend import SQLiteBackend

__all__ = ["Cursor", "Database", "Row", "SQLiteBackend"]
