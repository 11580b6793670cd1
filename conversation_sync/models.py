"""Domain models shared by the connector, store and view layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

SEEN_FLAG = "\\Seen"

SYSTEM_FLAGS = {
    "seen": "\\Seen",
    "answered": "\\Answered",
    "flagged": "\\Flagged",
    "deleted": "\\Deleted",
    "draft": "\\Draft",
    "recent": "\\Recent",
}


def normalize_flags(flags: Optional[Iterable[Any]]) -> list[str]:
    """Canonicalize a flag list coming from the wire or from a caller.

    System flags are matched case-insensitively with or without the leading
    backslash (``seen``, ``\\SEEN`` -> ``\\Seen``). Keywords are kept verbatim.
    Order is preserved and duplicates are dropped.
    """
    if not flags:
        return []
    if isinstance(flags, (str, bytes)):
        flags = [flags]

    result: list[str] = []
    for flag in flags:
        if isinstance(flag, bytes):
            flag = flag.decode("utf-8", errors="replace")
        if not isinstance(flag, str):
            continue
        flag = flag.strip()
        if not flag:
            continue
        flag = SYSTEM_FLAGS.get(flag.lstrip("\\").lower(), flag)
        if flag not in result:
            result.append(flag)
    return result


def coerce_uid(value: Any) -> Optional[int]:
    """Return ``value`` as a positive int UID, or None when it is not one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        uid = int(value.strip())
        return uid if uid > 0 else None
    return None


def to_utc(value: Optional[datetime]) -> datetime:
    """Return an aware UTC datetime; naive values are taken as UTC, None as now."""
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"

    @classmethod
    def from_string(cls, value: str) -> "Direction":
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(
                f"Invalid direction '{value}'. Must be 'inbound' or 'outbound'"
            )


@dataclass(frozen=True)
class Attachment:
    """Attachment metadata. Content is never stored."""

    filename: str
    content_type: str
    size: int = 0
    content_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "content_type": self.content_type,
            "size": self.size,
            "content_id": self.content_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attachment":
        return cls(
            filename=data.get("filename") or "unnamed",
            content_type=data.get("content_type") or "application/octet-stream",
            size=int(data.get("size") or 0),
            content_id=data.get("content_id"),
        )


@dataclass(frozen=True)
class RawMessage:
    """One message as streamed off the wire."""

    uid: int
    flags: tuple[str, ...]
    raw_bytes: bytes


@dataclass(frozen=True)
class MailboxInfo:
    name: str
    exists: int
    uidvalidity: Optional[int] = None
    uidnext: Optional[int] = None


@dataclass
class ParsedMessage:
    """Structured message with canonical threading headers."""

    message_id: Optional[str]
    in_reply_to: Optional[str]
    references: list[str]
    from_addr: str
    to_addr: str
    cc_addr: str
    bcc_addr: str
    subject: str
    text: str
    html: str
    date: datetime
    attachments: list[Attachment] = field(default_factory=list)


@dataclass
class MessageRecord:
    """Write model handed to the reconciler."""

    uid: Optional[int]
    remote_id: Optional[str]
    thread_id: str
    from_addr: str = ""
    to_addr: str = ""
    cc_addr: str = ""
    bcc_addr: str = ""
    subject: str = ""
    text: str = ""
    html: str = ""
    date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attachments: list[Attachment] = field(default_factory=list)
    direction: Direction = Direction.INBOUND
    in_reply_to: Optional[str] = None
    references: list[str] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.uid = coerce_uid(self.uid)
        self.date = to_utc(self.date)
        self.flags = normalize_flags(self.flags)

    @property
    def is_unread(self) -> bool:
        return SEEN_FLAG not in self.flags

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)

    @classmethod
    def from_parsed(
        cls,
        parsed: ParsedMessage,
        thread_id: str,
        uid: Optional[int] = None,
        flags: Optional[Iterable[Any]] = None,
        direction: Direction = Direction.INBOUND,
    ) -> "MessageRecord":
        return cls(
            uid=uid,
            remote_id=parsed.message_id,
            thread_id=thread_id,
            from_addr=parsed.from_addr,
            to_addr=parsed.to_addr,
            cc_addr=parsed.cc_addr,
            bcc_addr=parsed.bcc_addr,
            subject=parsed.subject,
            text=parsed.text,
            html=parsed.html,
            date=parsed.date,
            attachments=list(parsed.attachments),
            direction=direction,
            in_reply_to=parsed.in_reply_to,
            references=list(parsed.references),
            flags=normalize_flags(flags),
        )


@dataclass
class StoredMessage:
    """A persisted message row."""

    id: int
    tenant_id: str
    uid: Optional[int]
    remote_id: Optional[str]
    thread_id: str
    from_addr: str
    to_addr: str
    cc_addr: str
    bcc_addr: str
    subject: str
    text: str
    html: str
    date: datetime
    direction: Direction
    in_reply_to: Optional[str]
    references: list[str]
    flags: list[str]
    attachments: list[Attachment]
    is_thread_starter: bool = False
    thread_count: int = 1
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_unread(self) -> bool:
        return SEEN_FLAG not in self.flags

    @property
    def is_reply(self) -> bool:
        return bool(self.in_reply_to and self.in_reply_to.strip())

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)


@dataclass
class UpsertOutcome:
    message_id: int
    created: bool


@dataclass
class IngestOutcome:
    message_id: int
    thread_id: str
    created: bool


@dataclass
class ThreadStats:
    thread_id: str
    thread_count: int
    last_message_at: datetime
    starter_id: int


@dataclass
class SyncResult:
    """Counts reported for one sync run."""

    tenant_id: str
    mailbox: str = "INBOX"
    exists: int = 0
    processed: int = 0
    new: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "mailbox": self.mailbox,
            "exists": self.exists,
            "processed": self.processed,
            "new": self.new,
            "errors": self.errors,
        }


@dataclass
class ConnectionTestResult:
    success: bool
    host: str
    port: int
    total_messages: int = 0
    error: Optional[str] = None
