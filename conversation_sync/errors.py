"""Exception types raised by the sync and threading engine."""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from conversation_sync.models import SyncResult


class ConversationSyncError(Exception):
    """Base class for engine errors that are not connection failures."""


class MailboxConnectionError(ConnectionError):
    """Network, TLS, authentication or protocol failure talking to the mailbox.

    Fatal for a sync run. ``result`` holds the partial counts of the run that
    was aborted, when there was one.
    """

    def __init__(self, message: str, result: Optional["SyncResult"] = None):
        super().__init__(message)
        self.result = result


class ParseError(ConversationSyncError):
    """Raw message bytes could not be decoded into a structured message."""


class NormalizationError(ConversationSyncError):
    """A Message-ID or reference value is not a usable identifier."""


class StoreConflict(ConversationSyncError):
    """A write kept colliding with a uniqueness constraint after one retry."""


class SyncInProgressError(ConversationSyncError):
    """A sync run for the tenant is already active."""

    def __init__(self, tenant_id: str):
        super().__init__(f"Sync already running for tenant {tenant_id}")
        self.tenant_id = tenant_id
