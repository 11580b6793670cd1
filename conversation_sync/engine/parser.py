"""Raw message parsing and threading header normalization."""

from __future__ import annotations

import logging
import re
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from typing import Any, Iterable, Optional, Union

from conversation_sync.errors import NormalizationError, ParseError
from conversation_sync.models import Attachment, ParsedMessage, to_utc

logger = logging.getLogger(__name__)

NO_SUBJECT = "(no subject)"

_ADJACENT_IDS = re.compile(r">\s*<")


def canonicalize_message_id(raw: Any) -> str:
    """Return the canonical ``<local@domain>`` form of a Message-ID.

    Raises:
        NormalizationError: If the value is empty or has no ``@``
    """
    if raw is None:
        raise NormalizationError("Message ID is missing")
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        raise NormalizationError(f"Message ID has unsupported type {type(raw).__name__}")

    clean_id = raw.strip()
    if clean_id.startswith("<") and clean_id.endswith(">"):
        clean_id = clean_id[1:-1]

    if "@" not in clean_id:
        raise NormalizationError(f"Message ID missing @ symbol: {clean_id!r}")

    return f"<{clean_id}>"


def normalize_message_id(raw: Any) -> Optional[str]:
    """Canonicalize a Message-ID, returning None when it is unusable."""
    if raw is None:
        return None
    try:
        return canonicalize_message_id(raw)
    except NormalizationError as e:
        logger.debug(f"Dropping message id: {e}")
        return None


def parse_references(raw: Union[str, Iterable[Any], None]) -> list[str]:
    """Split a References header into canonical ids.

    Accepts the raw header string or an already split list. Order is kept and
    duplicates are not removed.
    """
    if not raw:
        return []

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        entries: Iterable[Any] = _ADJACENT_IDS.sub("> <", raw).split()
    else:
        entries = raw

    references = []
    for entry in entries:
        if not isinstance(entry, (str, bytes)):
            continue
        normalized = normalize_message_id(entry)
        if normalized:
            references.append(normalized)
    return references


def _header(message: EmailMessage, name: str) -> str:
    value = message.get(name)
    if value is None:
        return ""
    return str(value).strip()


def _part_text(part: Any) -> str:
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def _body(message: EmailMessage, subtype: str) -> str:
    part = message.get_body(preferencelist=(subtype,))
    if part is None:
        return ""
    content = _part_text(part)
    return content if isinstance(content, str) else ""


def _attachments(message: EmailMessage) -> list[Attachment]:
    attachments = []
    for part in message.iter_attachments():
        payload = part.get_payload(decode=True) or b""
        content_id = part.get("Content-ID")
        attachments.append(
            Attachment(
                filename=part.get_filename() or "unnamed",
                content_type=part.get_content_type(),
                size=len(payload) if isinstance(payload, bytes) else 0,
                content_id=str(content_id).strip() if content_id else None,
            )
        )
    return attachments


def _date(message: EmailMessage):
    try:
        header = message.get("Date")
    except (ValueError, TypeError, IndexError) as e:
        logger.debug(f"Unparseable Date header ({e}), using ingestion time")
        return to_utc(None)
    parsed = getattr(header, "datetime", None) if header is not None else None
    if parsed is None and header is not None:
        logger.debug(f"Unparseable Date header {str(header)!r}, using ingestion time")
    return to_utc(parsed)


def parse_message(raw_bytes: bytes) -> ParsedMessage:
    """Parse raw RFC 822 bytes into a ParsedMessage.

    Args:
        raw_bytes: Message source as fetched from the server

    Returns:
        ParsedMessage with canonical Message-ID, In-Reply-To and References

    Raises:
        ParseError: If the bytes cannot be decoded into a message
    """
    if not isinstance(raw_bytes, (bytes, bytearray)):
        raise ParseError(f"Expected bytes, got {type(raw_bytes).__name__}")
    if not raw_bytes.strip():
        raise ParseError("Message source is empty")

    try:
        message = BytesParser(policy=policy.default).parsebytes(bytes(raw_bytes))
        if not message.keys():
            raise ParseError("Message has no headers")

        in_reply_to_ids = parse_references(_header(message, "In-Reply-To"))

        return ParsedMessage(
            message_id=normalize_message_id(_header(message, "Message-ID") or None),
            in_reply_to=in_reply_to_ids[0] if in_reply_to_ids else None,
            references=parse_references(_header(message, "References")),
            from_addr=_header(message, "From"),
            to_addr=_header(message, "To"),
            cc_addr=_header(message, "Cc"),
            bcc_addr=_header(message, "Bcc"),
            subject=_header(message, "Subject") or NO_SUBJECT,
            text=_body(message, "plain"),
            html=_body(message, "html"),
            date=_date(message),
            attachments=_attachments(message),
        )
    except ParseError:
        raise
    except Exception as e:
        raise ParseError(f"Failed to parse message: {e}") from e
