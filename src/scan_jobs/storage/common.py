"""Shared storage plumbing: timestamps, JSON columns and the SQLite engine."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; treat naive values read back as UTC."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def dump_json(value: dict[str, Any]) -> str:
    """Serialize a config or record payload for a Text column.

    Tool output can contain non-ASCII banners and matcher evidence; it is
    stored as-is.
    """

    return json.dumps(value, ensure_ascii=False, default=str)


def load_json_object(text: str | None, *, context: str) -> dict[str, Any]:
    """Read back a JSON object column; a damaged value becomes `{}` with a warning."""

    if not text:
        return {}
    try:
        value = json.loads(text)
    except json.JSONDecodeError as error:
        logger.warning("Unreadable JSON in %s: %s", context, error.msg)
        return {}
    if not isinstance(value, dict):
        logger.warning("Expected a JSON object in %s, got %s", context, type(value).__name__)
        return {}
    return value


def build_sqlite_engine(*, db_path: Path, busy_timeout_ms: int = 5_000) -> Engine:
    """Build the SQLAlchemy engine; the database directory is created on demand.

    Several CLI processes may write the same file, so connections wait up to
    `busy_timeout_ms` for the write lock instead of failing at once.
    """

    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )
    event.listen(
        engine,
        "connect",
        lambda dbapi_connection, _: _apply_sqlite_pragmas(
            dbapi_connection,
            busy_timeout_ms=busy_timeout_ms,
        ),
    )
    return engine


def _apply_sqlite_pragmas(dbapi_connection: sqlite3.Connection, *, busy_timeout_ms: int) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()
