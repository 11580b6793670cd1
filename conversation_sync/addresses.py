"""Helpers for formatted address strings such as ``"Jane" <jane@example.com>``."""

from email.utils import getaddresses, parseaddr
from typing import List, Optional

# Display names with these characters must stay quoted to be parsed back.
_SPECIALS = set(',;:<>@"')


def _parse(value: Optional[str]) -> tuple[str, str, str]:
    if not value or not isinstance(value, str):
        return "", "", ""
    trimmed = value.strip()
    if not trimmed:
        return "", "", ""
    name, addr = parseaddr(trimmed)
    return name.strip(), addr.strip(), trimmed


def extract_clean_email(value: Optional[str]) -> str:
    """Return the bare address from a formatted address string."""
    _, addr, trimmed = _parse(value)
    return addr or trimmed


def extract_display_name(value: Optional[str]) -> str:
    """Return the display name, falling back to the bare address."""
    name, addr, trimmed = _parse(value)
    return name or addr or trimmed


def format_for_display(value: Optional[str], include_name: bool = True) -> str:
    if not value:
        return ""
    clean = extract_clean_email(value)
    name = extract_display_name(value)
    if include_name and name and name != clean:
        return f"{name} <{clean}>"
    return clean


def split_addresses(value: Optional[str]) -> List[str]:
    """Split a header value holding several addresses into formatted entries.

    Display names containing commas stay quoted so each entry parses back
    to a single address.
    """
    if not value or not isinstance(value, str):
        return []
    entries = []
    for name, addr in getaddresses([value]):
        addr = addr.strip()
        name = name.strip()
        if not addr:
            continue
        if name and _SPECIALS & set(name):
            name = '"{}"'.format(name.replace("\\", "\\\\").replace('"', '\\"'))
        entries.append(f"{name} <{addr}>" if name else addr)
    return entries


def join_clean_emails(value: Optional[str]) -> str:
    """Bare addresses of every recipient in a header, comma separated."""
    return ", ".join(extract_clean_email(entry) for entry in split_addresses(value))


def join_display_names(value: Optional[str]) -> str:
    """Display names of every recipient in a header, comma separated."""
    return ", ".join(extract_display_name(entry) for entry in split_addresses(value))
