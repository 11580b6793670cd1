"""IMAP mailbox connector."""

import logging
import ssl
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional

import imapclient

from conversation_sync.config import ImapConfig
from conversation_sync.errors import MailboxConnectionError
from conversation_sync.models import (
    ConnectionTestResult,
    MailboxInfo,
    RawMessage,
    normalize_flags,
)

logger = logging.getLogger(__name__)

FETCH_ATTRIBUTES = ["BODY.PEEK[]", "FLAGS"]

# Socket and protocol failures that end a session.
_SESSION_ERRORS = (imapclient.IMAPClient.Error, OSError, EOFError)


def _ssl_context(verify_tls: bool) -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    if not verify_tls:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def _chunks(items: List[int], size: int) -> Iterator[List[int]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class MailboxConnector:
    """One authenticated IMAP session for a tenant mailbox."""

    def __init__(self, config: ImapConfig):
        """Initialize the connector.

        Args:
            config: IMAP configuration
        """
        self.config = config
        self.client: Optional[imapclient.IMAPClient] = None
        self.current_mailbox: Optional[str] = None
        self._lock = threading.RLock()

    def __enter__(self) -> "MailboxConnector":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def connect(self) -> None:
        """Connect and log in.

        Raises:
            MailboxConnectionError: If connection or authentication fails
        """
        try:
            self.client = imapclient.IMAPClient(
                self.config.host,
                port=self.config.port,
                ssl=self.config.use_ssl,
                ssl_context=_ssl_context(self.config.verify_tls),
                timeout=imapclient.SocketTimeout(
                    connect=self.config.connection_timeout,
                    read=self.config.greeting_timeout,
                ),
            )

            if not self.config.password:
                raise ValueError("Password is required for authentication")

            self.client.login(self.config.username, self.config.password)
            logger.info(f"Connected to IMAP server {self.config.host}")
        except Exception as e:
            self.client = None
            logger.error(f"Failed to connect to IMAP server: {e}")
            raise MailboxConnectionError(f"Failed to connect to IMAP server: {e}") from e

    def close(self) -> None:
        """Log out. Logout failures are logged and ignored."""
        if self.client:
            try:
                self.client.logout()
            except Exception as e:
                logger.warning(f"Error during IMAP logout: {e}")
            finally:
                self.client = None
                self.current_mailbox = None
                logger.info("Disconnected from IMAP server")

    def _get_client(self) -> imapclient.IMAPClient:
        if self.client is None:
            raise MailboxConnectionError("IMAP session is not connected")
        return self.client

    def open_mailbox(self, name: Optional[str] = None, readonly: bool = False) -> MailboxInfo:
        """Select a mailbox.

        Raises:
            MailboxConnectionError: If the server rejects the selection
        """
        name = name or self.config.mailbox
        client = self._get_client()
        try:
            result: Dict[Any, Any] = client.select_folder(name, readonly=readonly)
        except _SESSION_ERRORS as e:
            logger.error(f"Error selecting mailbox {name}: {e}")
            raise MailboxConnectionError(f"Failed to select mailbox {name}: {e}") from e

        self.current_mailbox = name
        info = MailboxInfo(
            name=name,
            exists=int(result.get(b"EXISTS", 0) or 0),
            uidvalidity=result.get(b"UIDVALIDITY"),
            uidnext=result.get(b"UIDNEXT"),
        )
        logger.debug(f"Selected mailbox '{name}' ({info.exists} messages)")
        return info

    @contextmanager
    def mailbox_lock(self, name: Optional[str] = None) -> Iterator[None]:
        """Hold the connector's exclusive mailbox lock for the duration."""
        name = name or self.current_mailbox or self.config.mailbox
        with self._lock:
            logger.debug(f"Acquired lock on mailbox '{name}'")
            try:
                yield
            finally:
                logger.debug(f"Released lock on mailbox '{name}'")

    def fetch_range(self, uid_range: str = "1:*") -> Iterator[RawMessage]:
        """Yield messages in ``uid_range`` in ascending UID order.

        Bodies are fetched ``fetch_batch_size`` at a time.

        Raises:
            MailboxConnectionError: If the session fails mid-stream
        """
        client = self._get_client()
        try:
            uids = sorted(int(uid) for uid in client.search(["UID", uid_range]))
        except _SESSION_ERRORS as e:
            raise MailboxConnectionError(f"UID search failed: {e}") from e

        logger.debug(f"Streaming {len(uids)} messages in range {uid_range}")

        for chunk in _chunks(uids, self.config.fetch_batch_size):
            try:
                response: Any = client.fetch(chunk, FETCH_ATTRIBUTES)
            except _SESSION_ERRORS as e:
                raise MailboxConnectionError(f"Fetch failed: {e}") from e

            for uid in chunk:
                message_data = response.get(uid)
                if not message_data:
                    logger.warning(f"Server returned nothing for message {uid}")
                    continue
                raw_message = message_data.get(b"BODY[]") or message_data.get(
                    b"BODY.PEEK[]"
                )
                if not raw_message or not isinstance(raw_message, bytes):
                    logger.warning(f"No body found for message {uid}")
                    continue

                yield RawMessage(
                    uid=uid,
                    flags=tuple(normalize_flags(message_data.get(b"FLAGS", ()))),
                    raw_bytes=raw_message,
                )

    def _ensure_selected(self) -> None:
        if self.current_mailbox is None:
            self.open_mailbox(self.config.mailbox)

    def _store_flags(self, operation: str, uid: int, flags: Iterable[str]) -> List[str]:
        client = self._get_client()
        wanted = normalize_flags(flags)
        with self.mailbox_lock():
            self._ensure_selected()
            try:
                result = getattr(client, operation)([uid], wanted)
            except _SESSION_ERRORS as e:
                logger.error(f"Failed to {operation} on message {uid}: {e}")
                raise MailboxConnectionError(
                    f"Failed to {operation} on message {uid}: {e}"
                ) from e
        server_flags = normalize_flags((result or {}).get(uid, ()))
        logger.debug(f"{operation} {wanted} on message {uid} -> {server_flags}")
        return server_flags

    def set_flags(self, uid: int, flags: Iterable[str]) -> List[str]:
        """Replace the flags of ``uid``; returns the server's resulting flags."""
        return self._store_flags("set_flags", uid, flags)

    def add_flags(self, uid: int, flags: Iterable[str]) -> List[str]:
        return self._store_flags("add_flags", uid, flags)

    def remove_flags(self, uid: int, flags: Iterable[str]) -> List[str]:
        return self._store_flags("remove_flags", uid, flags)

    def test_connection(self) -> ConnectionTestResult:
        """Check that the mailbox can be reached and read.

        Never raises; failures are reported on the result.
        """
        try:
            self.connect()
            info = self.open_mailbox(self.config.mailbox, readonly=True)
            if info.exists > 0:
                client = self._get_client()
                first_uids = sorted(client.search(["UID", "1:*"]))[:1]
                if first_uids:
                    client.fetch(first_uids, ["BODY.PEEK[HEADER]"])
            logger.info(
                f"Connection test to {self.config.host} succeeded ({info.exists} messages)"
            )
            return ConnectionTestResult(
                success=True,
                host=self.config.host,
                port=self.config.port,
                total_messages=info.exists,
            )
        except Exception as e:
            logger.error(f"Connection test to {self.config.host} failed: {e}")
            return ConnectionTestResult(
                success=False,
                host=self.config.host,
                port=self.config.port,
                error=str(e),
            )
        finally:
            self.close()
