from typing import Any

from conversation_sync.db.postgres import PostgresMessageStore
from conversation_sync.db.sqlite import SqliteMessageStore
from conversation_sync.db.types import DuplicateKeyError, MessageStore


def create_store(config: Any) -> MessageStore:
    """Build the message store selected by ``config.backend``.

    ``config`` is a StoreConfig. The store is returned uninitialized.
    """
    from conversation_sync.config import StoreBackend

    if config.backend == StoreBackend.POSTGRES:
        postgres_config = getattr(config, "postgres", None)
        if not postgres_config:
            raise ValueError("PostgreSQL config is required (store.postgres)")
        return PostgresMessageStore(
            host=postgres_config.host,
            port=postgres_config.port,
            database=postgres_config.database,
            user=postgres_config.user,
            password=postgres_config.password,
            ssl_mode=getattr(postgres_config, "ssl_mode", "prefer"),
            min_pool_size=getattr(postgres_config, "min_pool_size", 1),
            max_pool_size=getattr(postgres_config, "max_pool_size", 10),
        )

    return SqliteMessageStore(config.sqlite.path)


__all__ = [
    "DuplicateKeyError",
    "MessageStore",
    "PostgresMessageStore",
    "SqliteMessageStore",
    "create_store",
]
