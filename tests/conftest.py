"""Pytest fixtures for conversation sync tests."""

import email.utils
import logging
from datetime import datetime, timezone
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, List, Optional

import pytest

from conversation_sync.config import ImapConfig, TenantConfig
from conversation_sync.db.sqlite import SqliteMessageStore

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@pytest.fixture
def mock_imap_config():
    """Create a mock IMAP configuration."""
    return ImapConfig(
        host="imap.example.com",
        port=993,
        username="test@example.com",
        password="password",
        fetch_batch_size=2,
    )


@pytest.fixture
def tenant(mock_imap_config):
    return TenantConfig(tenant_id="tenant-a", imap=mock_imap_config)


@pytest.fixture
def store(tmp_path):
    """An initialized SQLite message store in a temporary directory."""
    message_store = SqliteMessageStore(tmp_path / "conversations.db")
    message_store.initialize()
    yield message_store
    message_store.close()


def build_raw_message(
    message_id: Optional[str] = "<root@example.com>",
    subject: str = "Hello",
    body: str = "This is a simple test email.",
    sender: str = "Test Sender <sender@example.com>",
    to: str = "Test Recipient <recipient@example.com>",
    in_reply_to: Optional[str] = None,
    references: Optional[List[str]] = None,
    date: Optional[datetime] = None,
    attachment: Optional[bytes] = None,
) -> bytes:
    """Serialize a test message the way a server would return it."""
    if attachment is not None:
        msg = MIMEMultipart()
        msg.attach(MIMEText(body, "plain"))
        part = MIMEApplication(attachment)
        part.add_header("Content-Disposition", "attachment", filename="test.txt")
        msg.attach(part)
    else:
        msg = MIMEText(body)

    msg["From"] = sender
    msg["To"] = to
    msg["Subject"] = subject
    if message_id:
        msg["Message-ID"] = message_id
    if in_reply_to:
        msg["In-Reply-To"] = in_reply_to
    if references:
        msg["References"] = " ".join(references)
    msg["Date"] = email.utils.format_datetime(
        date or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    )
    return msg.as_bytes()


@pytest.fixture
def raw_message() -> Callable[..., bytes]:
    return build_raw_message
