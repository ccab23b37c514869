"""
taskledger Database Package

SQLite persistence for facts, projections and velocity history.
"""

from taskledger.db.database import (
    DatabaseProtocol,
    SQLiteDatabase,
)
from taskledger.db.schema import SCHEMA_SQLITE

__all__ = [
    "DatabaseProtocol",
    "SQLiteDatabase",
    "SCHEMA_SQLITE",
]
