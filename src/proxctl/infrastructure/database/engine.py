"""Database engine setup for SQLite with WAL mode.

The DB is stored at ``{home}/.proxctl/proxctl.db``. SQLAlchemy Core (not
ORM) is used: the only table is an append-mostly event log.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from proxctl.infrastructure.database.schema import metadata

STATE_DIR = ".proxctl"
DB_FILENAME = "proxctl.db"


def create_db_engine(db_path: Path) -> Engine:
    """Create a SQLite engine with WAL mode enabled."""
    engine = create_engine(f"sqlite:///{db_path}", echo=False)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn: Any, _: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


def init_database(home: Path) -> Engine:
    """Initialize the database at ``{home}/.proxctl/proxctl.db``.

    Idempotent — safe to call on an existing home.
    """
    state_dir = home / STATE_DIR
    state_dir.mkdir(parents=True, exist_ok=True)
    (state_dir / "plugins").mkdir(exist_ok=True)

    engine = create_db_engine(state_dir / DB_FILENAME)
    metadata.create_all(engine)
    return engine
