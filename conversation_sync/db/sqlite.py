"""SQLite message store for single-node deployments and tests."""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from conversation_sync.db import schema
from conversation_sync.db.types import DuplicateKeyError, MessageStore

logger = logging.getLogger(__name__)


def _unicode_lower(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


class SqliteMessageStore(MessageStore):
    """Message store backed by a local SQLite file."""

    def __init__(self, db_path: str | Path = "config/conversations.db"):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def initialize(self) -> None:
        with self._get_connection() as conn:
            conn.execute(schema.SQLITE_MESSAGES_TABLE)
            for statement in schema.MESSAGE_INDEXES:
                conn.execute(statement)
            conn.commit()
        logger.info(f"Message store database initialized at {self.db_path}")

    def close(self) -> None:
        # Connections are opened per operation.
        pass

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection context manager."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        # Built-in LOWER() only folds ASCII; search terms are folded with str.lower().
        conn.create_function("LOWER", 1, _unicode_lower, deterministic=True)
        try:
            yield conn
        finally:
            conn.close()

    def _query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        with self._get_connection() as conn:
            cursor = conn.execute(sql, tuple(params))
            return [dict(row) for row in cursor.fetchall()]

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self._get_connection() as conn:
            try:
                cursor = conn.execute(sql, tuple(params))
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "UNIQUE" in str(e).upper():
                    raise DuplicateKeyError(str(e)) from e
                raise
            return cursor.rowcount

    def _insert(self, sql: str, params: Sequence[Any]) -> int:
        with self._get_connection() as conn:
            try:
                cursor = conn.execute(sql, tuple(params))
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "UNIQUE" in str(e).upper():
                    raise DuplicateKeyError(str(e)) from e
                raise
            return int(cursor.lastrowid)

    def _encode_datetime(self, value: Optional[datetime]) -> Optional[str]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")

    def _decode_datetime(self, value: Any) -> Optional[datetime]:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            parsed = value
        else:
            try:
                parsed = datetime.fromisoformat(str(value))
            except ValueError:
                logger.warning(f"Unreadable stored timestamp {value!r}")
                return None
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed
