from conversation_sync.engine.aggregator import recompute_thread
from conversation_sync.engine.imap_sync import MailboxConnector
from conversation_sync.engine.parser import (
    canonicalize_message_id,
    normalize_message_id,
    parse_message,
    parse_references,
)
from conversation_sync.engine.reconciler import StoreReconciler
from conversation_sync.engine.sync import (
    SyncEngine,
    add_message_flags,
    ingest_message,
    recompute_all_threads,
    remove_message_flags,
    set_message_flags,
    sync_mailbox,
    test_connection,
)
from conversation_sync.engine.thread_resolver import (
    build_reply_headers,
    generate_message_id,
    generate_thread_id,
    resolve_thread_id,
)

__all__ = [
    "MailboxConnector",
    "StoreReconciler",
    "SyncEngine",
    "add_message_flags",
    "build_reply_headers",
    "canonicalize_message_id",
    "generate_message_id",
    "generate_thread_id",
    "ingest_message",
    "normalize_message_id",
    "parse_message",
    "parse_references",
    "recompute_all_threads",
    "recompute_thread",
    "remove_message_flags",
    "resolve_thread_id",
    "set_message_flags",
    "sync_mailbox",
    "test_connection",
]
