"""Tests for the PostgreSQL message store using a mocked connection pool."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from psycopg import errors as pg_errors

from conversation_sync.config import PostgresConfig, SqliteConfig, StoreBackend, StoreConfig
from conversation_sync.db import (
    DuplicateKeyError,
    PostgresMessageStore,
    SqliteMessageStore,
    create_store,
)
from conversation_sync.models import MessageRecord


@pytest.fixture
def pg():
    """A store wired to a mock pool, plus the mock connection and cursor."""
    store = PostgresMessageStore(host="db.test", password="secret")
    cursor = MagicMock()
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    pool = MagicMock()
    pool.connection.return_value.__enter__.return_value = conn
    store._pool = pool
    return store, conn, cursor


def test_connection_requires_initialize():
    store = PostgresMessageStore()
    with pytest.raises(RuntimeError):
        with store.connection():
            pass


def test_initialize_creates_pool_and_schema():
    store = PostgresMessageStore(host="db.test", port=6543, database="mail", user="svc")
    with patch("psycopg_pool.ConnectionPool") as pool_cls:
        store.initialize()

    conninfo = pool_cls.call_args[0][0]
    assert conninfo == "postgresql://svc:@db.test:6543/mail?sslmode=prefer"
    assert pool_cls.call_args[1] == {"min_size": 1, "max_size": 10}
    conn = pool_cls.return_value.connection.return_value.__enter__.return_value
    cursor = conn.cursor.return_value.__enter__.return_value
    executed = [c[0][0] for c in cursor.execute.call_args_list]
    assert any("CREATE TABLE IF NOT EXISTS messages" in sql for sql in executed)
    conn.commit.assert_called_once()

    store.close()
    pool_cls.return_value.close.assert_called_once()
    assert store._pool is None


def test_insert_uses_returning_and_placeholders(pg):
    store, conn, cursor = pg
    cursor.fetchone.return_value = (42,)

    message_id = store.insert_message(
        "tenant-a",
        MessageRecord(
            uid=7,
            remote_id="<a@x>",
            thread_id="<a@x>",
            date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        ),
    )

    assert message_id == 42
    sql, params = cursor.execute.call_args[0]
    assert sql.endswith(" RETURNING id")
    assert "?" not in sql
    assert "%s" in sql
    assert params[0] == "tenant-a"
    assert params[1] == 7
    conn.commit.assert_called_once()


def test_unique_violation_maps_to_duplicate_key(pg):
    store, conn, cursor = pg
    cursor.execute.side_effect = pg_errors.UniqueViolation("duplicate key")

    with pytest.raises(DuplicateKeyError):
        store.insert_message("tenant-a", MessageRecord(uid=1, remote_id=None, thread_id="t"))
    conn.rollback.assert_called_once()

    with pytest.raises(DuplicateKeyError):
        store.update_thread_id(1, "t2")


def test_search_clause_translated(pg):
    store, _, cursor = pg
    cursor.fetchall.return_value = [{"total": 3}]

    assert store.count_threads("tenant-a", search="50%") == 3

    sql, params = cursor.execute.call_args[0]
    assert sql.count("%s") == 5
    assert params[1] == "%50\\%%"


def test_row_decoding_handles_native_types(pg):
    store, _, cursor = pg
    date = datetime(2024, 2, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))
    cursor.fetchall.return_value = [
        {
            "id": 5,
            "tenant_id": "tenant-a",
            "uid": 3,
            "remote_id": "<a@x>",
            "thread_id": "<a@x>",
            "subject": "Hi",
            "date": date,
            "direction": "outbound",
            "reference_ids": ["<r@x>"],
            "flags": ["\\Seen"],
            "attachments": [{"filename": "a.txt", "content_type": "text/plain", "size": 3}],
            "is_thread_starter": True,
            "thread_count": 2,
            "last_message_at": None,
        }
    ]

    message = store.get_message("tenant-a", 5)

    assert message.date == date
    assert message.date.tzinfo == timezone.utc
    assert message.references == ["<r@x>"]
    assert message.attachments[0].filename == "a.txt"
    assert message.is_unread is False
    assert message.is_thread_starter is True


class TestCreateStore:
    def test_sqlite(self, tmp_path):
        config = StoreConfig(sqlite=SqliteConfig(path=str(tmp_path / "x.db")))
        store = create_store(config)
        assert isinstance(store, SqliteMessageStore)

    def test_postgres(self):
        config = StoreConfig(
            backend=StoreBackend.POSTGRES,
            postgres=PostgresConfig(host="db.test", max_pool_size=3),
        )
        store = create_store(config)
        assert isinstance(store, PostgresMessageStore)
        assert store.host == "db.test"
        assert store.max_pool_size == 3

    def test_postgres_requires_config(self):
        with pytest.raises(ValueError):
            create_store(StoreConfig(backend=StoreBackend.POSTGRES))
