"""SQLite event log engine and schema via SQLAlchemy Core."""

from proxctl.infrastructure.database.engine import create_db_engine, init_database
from proxctl.infrastructure.database.schema import event_wal, metadata

__all__ = [
    "create_db_engine",
    "event_wal",
    "init_database",
    "metadata",
]
