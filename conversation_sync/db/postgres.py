from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, Sequence

from psycopg import errors as pg_errors
from psycopg.rows import dict_row

from conversation_sync.db import schema
from conversation_sync.db.types import DuplicateKeyError, MessageStore

logger = logging.getLogger(__name__)


class PostgresMessageStore(MessageStore):
    placeholder = "%s"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "conversations",
        user: str = "conversations",
        password: str = "",
        ssl_mode: str = "prefer",
        min_pool_size: int = 1,
        max_pool_size: int = 10,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.ssl_mode = ssl_mode
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: Any = None

    def _get_connection_string(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}?sslmode={self.ssl_mode}"

    def initialize(self) -> None:
        try:
            from psycopg_pool import ConnectionPool
        except ImportError:
            raise ImportError(
                "PostgreSQL support requires psycopg[binary] and psycopg_pool. Install with: pip install 'psycopg[binary]' psycopg_pool"
            )

        self._pool = ConnectionPool(
            self._get_connection_string(),
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
        )

        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(schema.POSTGRES_MESSAGES_TABLE)
                for statement in schema.MESSAGE_INDEXES:
                    cur.execute(statement)
                conn.commit()
        logger.info(f"Message store initialized on {self.host}:{self.port}/{self.database}")

    @contextmanager
    def connection(self) -> Iterator[Any]:
        if not self._pool:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        with self._pool.connection() as conn:
            yield conn

    def close(self) -> None:
        if self._pool:
            self._pool.close()
            self._pool = None

    def _query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        with self.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, tuple(params))
                return list(cur.fetchall())

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self.connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(sql, tuple(params))
                    rowcount = cur.rowcount
                conn.commit()
            except pg_errors.UniqueViolation as e:
                conn.rollback()
                raise DuplicateKeyError(str(e)) from e
            return rowcount

    def _insert(self, sql: str, params: Sequence[Any]) -> int:
        with self.connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(f"{sql} RETURNING id", tuple(params))
                    row = cur.fetchone()
                conn.commit()
            except pg_errors.UniqueViolation as e:
                conn.rollback()
                raise DuplicateKeyError(str(e)) from e
            return int(row[0])

    def _encode_datetime(self, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def _decode_datetime(self, value: Any) -> Optional[datetime]:
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
