"""Read-only conversation views over the message store."""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from conversation_sync.addresses import (
    extract_clean_email,
    extract_display_name,
    join_clean_emails,
    join_display_names,
    split_addresses,
)
from conversation_sync.db.types import MessageStore
from conversation_sync.models import Attachment, Direction, StoredMessage

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
DEFAULT_PREVIEW_LIMIT = 10
DEFAULT_SNIPPET_LENGTH = 150
RECENT_ACTIVITY_DAYS = 30

_REPLY_PREFIX = re.compile(r"^(re:\s*)+", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]*>")


@dataclass
class Participant:
    email: str
    display_name: str
    roles: list[str] = field(default_factory=list)

    @property
    def is_sender(self) -> bool:
        return "from" in self.roles

    @property
    def is_recipient(self) -> bool:
        return "to" in self.roles


@dataclass
class ThreadMessageView:
    """One message as shown inside a conversation."""

    id: int
    uid: Optional[int]
    remote_id: Optional[str]
    from_addr: str
    from_display: str
    to_addr: str
    to_display: str
    cc_addr: str
    cc_display: str
    bcc_addr: str
    bcc_display: str
    subject: str
    text: str
    html: str
    date: datetime
    direction: Direction
    flags: list[str]
    attachments: list[Attachment]
    in_reply_to: Optional[str]
    references: list[str]
    is_thread_starter: bool
    is_reply: bool
    is_unread: bool
    position: int
    total_in_thread: int


@dataclass
class ThreadSummary:
    thread_id: str
    subject: str
    snippet: str
    has_attachments: bool
    unread_count: int
    message_count: int
    first_message_at: datetime
    last_message_at: datetime
    participants: list[Participant]
    labels: list[str]
    messages: list[ThreadMessageView]


@dataclass
class ThreadPage:
    page: int
    page_size: int
    total: int
    pages: int
    threads: list[ThreadSummary]


@dataclass
class TimelineEvent:
    date: datetime
    from_display: str
    from_email: str
    action: str
    subject: str
    is_unread: bool
    is_reply: bool


@dataclass
class FullThread:
    thread_id: str
    subject: str
    original_subject: str
    message_count: int
    unread_count: int
    participants: list[Participant]
    date_started: datetime
    last_updated: datetime
    has_attachments: bool
    labels: list[str]
    messages: list[ThreadMessageView]
    timeline: list[TimelineEvent]
    metadata: dict[str, Any]


@dataclass
class DailyActivity:
    day: date
    count: int


@dataclass
class MailboxStats:
    total_threads: int
    total_messages: int
    unread_messages: int
    read_messages: int
    inbound_messages: int
    outbound_messages: int
    with_attachments: int
    recent_activity: list[DailyActivity]


def _is_reply_subject(subject: str) -> bool:
    return subject.strip().lower().startswith("re:")


def canonical_subject(subjects_oldest_first: list[str]) -> str:
    """Earliest subject that is not a reply, else the earliest without ``Re:``."""
    if not subjects_oldest_first:
        return ""
    for subject in subjects_oldest_first:
        if subject and not _is_reply_subject(subject):
            return subject.strip()
    return _REPLY_PREFIX.sub("", subjects_oldest_first[0].strip()).strip()


def make_snippet(message: StoredMessage, length: int = DEFAULT_SNIPPET_LENGTH) -> str:
    source = message.text if message.text else _HTML_TAG.sub(" ", message.html or "")
    snippet = source[:length]
    if not snippet.strip():
        return ""
    return f"{snippet}..."


def _message_view(
    message: StoredMessage, position: int, total: int, is_starter: bool
) -> ThreadMessageView:
    return ThreadMessageView(
        id=message.id,
        uid=message.uid,
        remote_id=message.remote_id,
        from_addr=extract_clean_email(message.from_addr),
        from_display=extract_display_name(message.from_addr),
        to_addr=join_clean_emails(message.to_addr),
        to_display=join_display_names(message.to_addr),
        cc_addr=join_clean_emails(message.cc_addr),
        cc_display=join_display_names(message.cc_addr),
        bcc_addr=join_clean_emails(message.bcc_addr),
        bcc_display=join_display_names(message.bcc_addr),
        subject=message.subject,
        text=message.text,
        html=message.html,
        date=message.date,
        direction=message.direction,
        flags=list(message.flags),
        attachments=list(message.attachments),
        in_reply_to=message.in_reply_to,
        references=list(message.references),
        is_thread_starter=is_starter,
        is_reply=message.is_reply,
        is_unread=message.is_unread,
        position=position,
        total_in_thread=total,
    )


def _starter_id(messages_oldest_first: list[StoredMessage]) -> int:
    for message in messages_oldest_first:
        if message.is_thread_starter:
            return message.id
    return messages_oldest_first[0].id


def _summary_participants(messages: list[StoredMessage]) -> list[Participant]:
    by_address: dict[str, Participant] = {}
    for role, attr in (("from", "from_addr"), ("to", "to_addr")):
        for message in messages:
            for entry in split_addresses(getattr(message, attr)):
                address = extract_clean_email(entry)
                if not address:
                    continue
                name = extract_display_name(entry) or address
                key = address.lower()
                participant = by_address.get(key)
                if participant is None:
                    by_address[key] = Participant(address, name, [role])
                    continue
                if role not in participant.roles:
                    participant.roles.append(role)
                if name != address and participant.display_name == participant.email:
                    participant.display_name = name

    return sorted(
        by_address.values(),
        key=lambda p: (not p.is_sender, p.display_name.casefold()),
    )


def _build_summary(
    thread_id: str,
    messages_newest_first: list[StoredMessage],
    preview_limit: int,
    snippet_length: int,
) -> ThreadSummary:
    oldest_first = list(reversed(messages_newest_first))
    starter_id = _starter_id(oldest_first)
    total = len(oldest_first)
    positions = {m.id: index for index, m in enumerate(oldest_first, start=1)}

    labels = sorted({flag for m in oldest_first for flag in m.flags if flag.strip()})

    return ThreadSummary(
        thread_id=thread_id,
        subject=canonical_subject([m.subject for m in oldest_first]),
        snippet=make_snippet(messages_newest_first[0], snippet_length),
        has_attachments=any(m.has_attachments for m in oldest_first),
        unread_count=sum(1 for m in oldest_first if m.is_unread),
        message_count=total,
        first_message_at=oldest_first[0].date,
        last_message_at=messages_newest_first[0].date,
        participants=_summary_participants(oldest_first),
        labels=labels,
        messages=[
            _message_view(m, positions[m.id], total, m.id == starter_id)
            for m in messages_newest_first[:preview_limit]
        ],
    )


def list_threads(
    store: MessageStore,
    tenant_id: str,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    search: Optional[str] = None,
    preview_limit: int = DEFAULT_PREVIEW_LIMIT,
    snippet_length: int = DEFAULT_SNIPPET_LENGTH,
) -> ThreadPage:
    """List conversations, most recently active first.

    ``search`` is a case-insensitive substring matched against subject,
    sender, recipients and text before grouping, so a filtered thread only
    shows its matching messages. ``total`` counts the distinct threads
    matching the filter.

    Raises:
        ValueError: If page or page_size is below 1
    """
    if page < 1:
        raise ValueError(f"page must be at least 1, got {page}")
    if page_size < 1:
        raise ValueError(f"page_size must be at least 1, got {page_size}")

    total = store.count_threads(tenant_id, search)
    thread_ids = store.page_thread_ids(
        tenant_id, limit=page_size, offset=(page - 1) * page_size, search=search
    )

    grouped: dict[str, list[StoredMessage]] = {tid: [] for tid in thread_ids}
    for message in store.get_messages_in_threads(tenant_id, thread_ids, search):
        grouped[message.thread_id].append(message)

    threads = [
        _build_summary(tid, grouped[tid], preview_limit, snippet_length)
        for tid in thread_ids
        if grouped[tid]
    ]

    return ThreadPage(
        page=page,
        page_size=page_size,
        total=total,
        pages=math.ceil(total / page_size) if total else 0,
        threads=threads,
    )


def get_full_thread(
    store: MessageStore, tenant_id: str, thread_id: str
) -> Optional[FullThread]:
    """Every message of a thread in date order, with participants and timeline.

    Returns:
        The thread, or None when no message carries ``thread_id``
    """
    messages = store.get_thread_messages(tenant_id, thread_id)
    if not messages:
        return None

    total = len(messages)
    starter_id = _starter_id(messages)
    views = [
        _message_view(m, index, total, m.id == starter_id)
        for index, m in enumerate(messages, start=1)
    ]
    starter = next(v for v in views if v.is_thread_starter)
    last = views[-1]

    participants = _full_participants(messages)

    labels: list[str] = []
    for view in views:
        for flag in view.flags:
            if flag not in labels:
                labels.append(flag)

    return FullThread(
        thread_id=thread_id,
        subject=canonical_subject([v.subject for v in views]),
        original_subject=starter.subject,
        message_count=total,
        unread_count=sum(1 for v in views if v.is_unread),
        participants=participants,
        date_started=starter.date,
        last_updated=last.date,
        has_attachments=any(v.attachments for v in views),
        labels=labels,
        messages=views,
        timeline=[
            TimelineEvent(
                date=v.date,
                from_display=v.from_display,
                from_email=v.from_addr,
                action="received" if v.direction == Direction.INBOUND else "sent",
                subject=v.subject,
                is_unread=v.is_unread,
                is_reply=v.is_reply,
            )
            for v in views
        ],
        metadata={
            "thread_starter_id": starter.id,
            "last_message_id": last.id,
            "has_inbound": any(v.direction == Direction.INBOUND for v in views),
            "has_outbound": any(v.direction == Direction.OUTBOUND for v in views),
            "reply_count": sum(1 for v in views if v.is_reply),
        },
    )


def _full_participants(messages: list[StoredMessage]) -> list[Participant]:
    """Participants by role: senders, then recipients, then cc."""
    seen = set()
    by_role: dict[str, list[Participant]] = {"from": [], "to": [], "cc": []}
    for message in messages:
        for role, raw in (
            ("from", message.from_addr),
            ("to", message.to_addr),
            ("cc", message.cc_addr),
        ):
            for entry in split_addresses(raw):
                address = extract_clean_email(entry)
                key = (address.lower(), role)
                if not address or key in seen:
                    continue
                seen.add(key)
                by_role[role].append(
                    Participant(address, extract_display_name(entry) or address, [role])
                )
    return by_role["from"] + by_role["to"] + by_role["cc"]


def get_mailbox_stats(
    store: MessageStore, tenant_id: str, now: Optional[datetime] = None
) -> MailboxStats:
    """Message totals for a tenant plus per-day counts for the last 30 days."""
    now = now or datetime.now(timezone.utc)
    counts = store.message_counts(tenant_id)
    since = now - timedelta(days=RECENT_ACTIVITY_DAYS)
    per_day = Counter(
        d.astimezone(timezone.utc).date()
        for d in store.message_dates_since(tenant_id, since)
    )

    total = counts.get("total_messages", 0)
    unread = counts.get("unread_messages", 0)
    return MailboxStats(
        total_threads=counts.get("total_threads", 0),
        total_messages=total,
        unread_messages=unread,
        read_messages=total - unread,
        inbound_messages=counts.get("inbound_messages", 0),
        outbound_messages=counts.get("outbound_messages", 0),
        with_attachments=counts.get("with_attachments", 0),
        recent_activity=[
            DailyActivity(day=day, count=count) for day, count in sorted(per_day.items())
        ],
    )


def get_thread_report(store: MessageStore, tenant_id: str) -> list[dict[str, Any]]:
    """Threading fields of every message in date order, for troubleshooting."""
    messages = store.list_messages(tenant_id)
    sizes = Counter(m.thread_id for m in messages)

    report = []
    for message in messages:
        entry = {
            "id": message.id,
            "uid": message.uid,
            "remote_id": message.remote_id,
            "thread_id": message.thread_id,
            "in_reply_to": message.in_reply_to,
            "references": list(message.references),
            "is_thread_starter": message.is_thread_starter,
            "thread_count": message.thread_count,
            "thread_size": sizes[message.thread_id],
            "subject": message.subject,
            "date": message.date.isoformat(),
        }
        logger.debug(f"Thread report: {entry}")
        report.append(entry)

    logger.debug(f"Thread report for tenant {tenant_id}: {len(sizes)} threads")
    return report
