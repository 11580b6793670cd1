"""Thread identity resolution from reply/reference chains.

Resolution is single pass and tenant scoped:

1. In-Reply-To set: inherit the stored parent's thread, or use the
   In-Reply-To value itself as a placeholder when the parent is unknown.
2. Otherwise References: the first reference already stored wins, else the
   first reference value.
3. Otherwise the message's own Message-ID, or a generated id.

Placeholders are never merged retroactively. A child stored before its parent
keeps the parent's Message-ID as thread id, and the parent later resolves to
that same id through rule 3, so the two end up in one thread without a merge
step. Threads that meet only through a shared ancestor stay separate until
``recompute_all_threads`` is run.
"""

from __future__ import annotations

import logging
import random
import string
import time
import uuid
from typing import Any, Optional, Protocol, Sequence

from conversation_sync.models import StoredMessage

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


class MessageLookup(Protocol):
    def find_by_remote_id(
        self, tenant_id: str, remote_id: str
    ) -> Optional[StoredMessage]: ...


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_thread_id() -> str:
    """Time-based thread id with a random suffix, for messages with no identity."""
    return f"thread-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def generate_message_id(domain: str) -> str:
    """Generate a canonical Message-ID for an outbound message."""
    timestamp = _base36(int(time.time() * 1000))
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"<{timestamp}.{suffix}@{domain}>"


def resolve_thread_id(
    lookup: MessageLookup,
    tenant_id: str,
    message_id: Optional[str],
    in_reply_to: Optional[str],
    references: Optional[Sequence[str]],
) -> str:
    """Compute the thread id for a message.

    Args:
        lookup: Store used to find already ingested messages
        tenant_id: Tenant the message belongs to
        message_id: Canonical Message-ID of the message, if any
        in_reply_to: Canonical In-Reply-To id, if any
        references: Canonical References ids in header order

    Returns:
        The thread id. Never empty.
    """
    if in_reply_to:
        parent = lookup.find_by_remote_id(tenant_id, in_reply_to)
        if parent is not None and parent.thread_id:
            logger.debug(f"Reply to {in_reply_to} joins thread {parent.thread_id}")
            return parent.thread_id
        logger.debug(f"Parent {in_reply_to} not stored yet, using it as thread id")
        return in_reply_to

    if references:
        for ref in references:
            ref_message = lookup.find_by_remote_id(tenant_id, ref)
            if ref_message is not None and ref_message.thread_id:
                logger.debug(f"Reference {ref} joins thread {ref_message.thread_id}")
                return ref_message.thread_id
        logger.debug(f"No stored references, using first reference {references[0]}")
        return references[0]

    if message_id:
        return message_id

    thread_id = generate_thread_id()
    logger.debug(f"Message without identity, generated thread id {thread_id}")
    return thread_id


def build_reply_headers(original: Any, new_message_id: str) -> dict[str, str]:
    """Threading headers for a reply to ``original``.

    ``original`` is a StoredMessage or anything with ``remote_id`` and
    ``references`` attributes.
    """
    references = list(getattr(original, "references", None) or [])
    original_id = getattr(original, "remote_id", None)
    if original_id and original_id not in references:
        references.append(original_id)

    headers = {"Message-ID": new_message_id}
    if original_id:
        headers["In-Reply-To"] = original_id
    if references:
        headers["References"] = " ".join(ref for ref in references if ref)
    return headers
