"""Mailbox sync, flag mutation and re-threading for a tenant."""

import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional

from conversation_sync.config import TenantConfig
from conversation_sync.db.types import MessageStore
from conversation_sync.engine.aggregator import recompute_thread
from conversation_sync.engine.imap_sync import MailboxConnector
from conversation_sync.engine.parser import parse_message
from conversation_sync.engine.reconciler import StoreReconciler
from conversation_sync.engine.thread_resolver import resolve_thread_id
from conversation_sync.errors import (
    MailboxConnectionError,
    ParseError,
    StoreConflict,
    SyncInProgressError,
)
from conversation_sync.models import (
    ConnectionTestResult,
    Direction,
    IngestOutcome,
    MessageRecord,
    ParsedMessage,
    SyncResult,
    coerce_uid,
)

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 10


def ingest_message(
    store: MessageStore,
    tenant_id: str,
    parsed: ParsedMessage,
    uid: Optional[int] = None,
    flags: Iterable[str] = (),
    direction: Direction = Direction.INBOUND,
) -> IngestOutcome:
    """Resolve the thread of ``parsed``, upsert it and refresh thread stats.

    Outbound messages are ingested with ``uid=None`` and must carry a
    Message-ID. A re-ingested message without any threading header keeps
    its stored thread id. When re-ingestion moves a message to another
    thread, both threads are re-aggregated.

    Raises:
        ValueError: If the message has neither uid nor Message-ID
        StoreConflict: If the write keeps conflicting
    """
    existing = store.find_matching(tenant_id, coerce_uid(uid), parsed.message_id)
    has_identity = bool(parsed.message_id or parsed.in_reply_to or parsed.references)

    if existing is not None and not has_identity:
        thread_id = existing.thread_id
    else:
        thread_id = resolve_thread_id(
            store,
            tenant_id,
            parsed.message_id,
            parsed.in_reply_to,
            parsed.references,
        )
    record = MessageRecord.from_parsed(
        parsed, thread_id, uid=uid, flags=flags, direction=direction
    )
    outcome = StoreReconciler(store).upsert(tenant_id, record)
    recompute_thread(store, tenant_id, thread_id)
    if existing is not None and existing.thread_id != thread_id:
        logger.debug(
            f"Message {outcome.message_id} moved from thread {existing.thread_id} "
            f"to {thread_id}"
        )
        recompute_thread(store, tenant_id, existing.thread_id)
    return IngestOutcome(
        message_id=outcome.message_id, thread_id=thread_id, created=outcome.created
    )


def sync_mailbox(
    tenant: TenantConfig,
    store: MessageStore,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> SyncResult:
    """Pull every message of the tenant's mailbox into the store.

    Messages that fail to parse or keep conflicting on write are counted
    as errors and skipped. The session is always closed.

    Raises:
        MailboxConnectionError: On connection, auth or protocol failure. The
            exception's ``result`` holds the counts reached so far.
    """
    mailbox = tenant.imap.mailbox
    result = SyncResult(tenant_id=tenant.tenant_id, mailbox=mailbox)
    connector = MailboxConnector(tenant.imap)
    logger.info(f"Starting sync for tenant {tenant.tenant_id}, mailbox {mailbox}")

    try:
        connector.connect()
        info = connector.open_mailbox(mailbox)
        result.exists = info.exists
        if info.exists == 0:
            logger.info(f"Mailbox {mailbox} is empty for tenant {tenant.tenant_id}")
            return result

        with connector.mailbox_lock(mailbox):
            for raw in connector.fetch_range("1:*"):
                result.processed += 1
                try:
                    parsed = parse_message(raw.raw_bytes)
                    outcome = ingest_message(
                        store,
                        tenant.tenant_id,
                        parsed,
                        uid=raw.uid,
                        flags=raw.flags,
                    )
                    if outcome.created:
                        result.new += 1
                except ParseError as e:
                    result.errors += 1
                    logger.error(f"Skipping message {raw.uid}: {e}")
                except StoreConflict as e:
                    result.errors += 1
                    logger.error(f"Skipping message {raw.uid}, store conflict: {e}")

                if result.processed % PROGRESS_EVERY == 0:
                    logger.info(
                        f"[SYNC] Progress: {result.processed}/{result.exists} messages "
                        f"({result.new} new, {result.errors} errors)"
                    )
                    if progress_callback:
                        progress_callback(result.processed, result.exists)
    except MailboxConnectionError as e:
        e.result = result
        logger.error(
            f"Sync for tenant {tenant.tenant_id} aborted after "
            f"{result.processed} messages: {e}"
        )
        raise
    finally:
        connector.close()

    logger.info(
        f"[SYNC] Sync complete for tenant {tenant.tenant_id}: "
        f"{result.processed} processed, {result.new} new, {result.errors} errors"
    )
    return result


def _mutate_flags(
    operation: str,
    tenant: TenantConfig,
    uid: int,
    flags: Iterable[str],
    store: Optional[MessageStore],
) -> List[str]:
    with MailboxConnector(tenant.imap) as connector:
        connector.open_mailbox(tenant.imap.mailbox)
        server_flags = getattr(connector, operation)(uid, flags)

    if store is not None:
        updated = store.update_flags(tenant.tenant_id, uid, server_flags)
        if not updated:
            logger.debug(f"Message {uid} not stored yet for tenant {tenant.tenant_id}")
    return server_flags


def set_message_flags(
    tenant: TenantConfig,
    uid: int,
    flags: Iterable[str],
    store: Optional[MessageStore] = None,
) -> List[str]:
    """Replace the flags of a message on the server.

    Returns:
        The flags reported by the server after the change
    """
    return _mutate_flags("set_flags", tenant, uid, flags, store)


def add_message_flags(
    tenant: TenantConfig,
    uid: int,
    flags: Iterable[str],
    store: Optional[MessageStore] = None,
) -> List[str]:
    return _mutate_flags("add_flags", tenant, uid, flags, store)


def remove_message_flags(
    tenant: TenantConfig,
    uid: int,
    flags: Iterable[str],
    store: Optional[MessageStore] = None,
) -> List[str]:
    return _mutate_flags("remove_flags", tenant, uid, flags, store)


def recompute_all_threads(store: MessageStore, tenant_id: str) -> int:
    """Re-resolve every stored message of a tenant, oldest first.

    Joins threads that were split because a parent arrived after its
    replies. Messages with no Message-ID, In-Reply-To or References keep
    their thread id.

    Returns:
        Number of messages whose thread id changed
    """
    messages = store.list_messages(tenant_id)
    logger.info(f"Recomputing threads for {len(messages)} messages of tenant {tenant_id}")

    affected = set()
    changed = 0
    for message in messages:
        if not (message.remote_id or message.in_reply_to or message.references):
            continue
        thread_id = resolve_thread_id(
            store,
            tenant_id,
            message.remote_id,
            message.in_reply_to,
            message.references,
        )
        if thread_id == message.thread_id:
            continue
        logger.debug(f"Message {message.id}: {message.thread_id} -> {thread_id}")
        store.update_thread_id(message.id, thread_id)
        affected.update((message.thread_id, thread_id))
        changed += 1

    for thread_id in sorted(affected):
        recompute_thread(store, tenant_id, thread_id)

    logger.info(
        f"Thread recompute for tenant {tenant_id}: {changed} messages moved, "
        f"{len(affected)} threads refreshed"
    )
    return changed


def test_connection(tenant: TenantConfig) -> ConnectionTestResult:
    """Check the tenant's IMAP settings without syncing anything."""
    return MailboxConnector(tenant.imap).test_connection()


class SyncEngine:
    """Runs tenant syncs, allowing one active run per tenant."""

    def __init__(self, store: MessageStore):
        self.store = store
        self.last_results: Dict[str, SyncResult] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _tenant_lock(self, tenant_id: str) -> threading.Lock:
        with self._registry_lock:
            if tenant_id not in self._locks:
                self._locks[tenant_id] = threading.Lock()
            return self._locks[tenant_id]

    def is_running(self, tenant_id: str) -> bool:
        return self._tenant_lock(tenant_id).locked()

    def sync(
        self,
        tenant: TenantConfig,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> SyncResult:
        """Sync a tenant unless a run for it is already active.

        Raises:
            SyncInProgressError: If the tenant is already syncing
            MailboxConnectionError: If the run fails on the connection
        """
        lock = self._tenant_lock(tenant.tenant_id)
        if not lock.acquire(blocking=False):
            logger.warning(f"Sync already running for tenant {tenant.tenant_id}")
            raise SyncInProgressError(tenant.tenant_id)
        try:
            result = sync_mailbox(tenant, self.store, progress_callback)
        except MailboxConnectionError as e:
            if e.result is not None:
                self.last_results[tenant.tenant_id] = e.result
            raise
        finally:
            lock.release()

        self.last_results[tenant.tenant_id] = result
        return result
