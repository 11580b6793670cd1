"""Thread level statistics kept on every message row of a thread."""

import logging
from typing import Optional

from conversation_sync.db.types import MessageStore
from conversation_sync.models import ThreadStats

logger = logging.getLogger(__name__)


def recompute_thread(
    store: MessageStore, tenant_id: str, thread_id: str
) -> Optional[ThreadStats]:
    """Recompute count, last activity and starter for one thread.

    The starter is the earliest message by date, ties broken by id. Running
    this twice on an unchanged thread writes the same values.

    Returns:
        The written stats, or None when the thread has no messages
    """
    messages = store.get_thread_messages(tenant_id, thread_id)
    if not messages:
        logger.info(f"Thread {thread_id} for tenant {tenant_id} has no messages")
        return None

    starter = messages[0]
    stats = ThreadStats(
        thread_id=thread_id,
        thread_count=len(messages),
        last_message_at=max(m.date for m in messages),
        starter_id=starter.id,
    )
    store.update_thread_stats(
        tenant_id,
        thread_id,
        thread_count=stats.thread_count,
        last_message_at=stats.last_message_at,
        starter_id=stats.starter_id,
    )
    logger.debug(
        f"Thread {thread_id}: {stats.thread_count} messages, starter {stats.starter_id}"
    )
    return stats
