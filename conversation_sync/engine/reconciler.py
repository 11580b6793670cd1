"""Idempotent upsert of message records keyed on UID or Message-ID."""

import logging

from conversation_sync.db.types import DuplicateKeyError, MessageStore
from conversation_sync.errors import StoreConflict
from conversation_sync.models import MessageRecord, UpsertOutcome

logger = logging.getLogger(__name__)


class StoreReconciler:
    """Insert-or-update of message records within one tenant."""

    def __init__(self, store: MessageStore):
        self.store = store

    def upsert(self, tenant_id: str, record: MessageRecord) -> UpsertOutcome:
        """Write ``record`` so that at most one row exists per uid and per remote id.

        Args:
            tenant_id: Tenant owning the record
            record: Message to write. Needs a uid, a remote_id, or both.

        Returns:
            UpsertOutcome with the row id and whether it was created

        Raises:
            ValueError: If the record has neither uid nor remote_id
            StoreConflict: If a uniqueness race persists after one retry
        """
        if record.uid is None and not record.remote_id:
            raise ValueError("Record needs a uid or a remote_id to be reconciled")

        try:
            return self._write(tenant_id, record)
        except DuplicateKeyError as e:
            logger.warning(
                f"Duplicate key writing uid={record.uid} remote_id={record.remote_id} "
                f"for tenant {tenant_id}, retrying as update: {e}"
            )

        existing = self.store.find_matching(tenant_id, record.uid, record.remote_id)
        if existing is None:
            raise StoreConflict(
                f"Conflicting row for uid={record.uid} remote_id={record.remote_id} disappeared"
            )
        try:
            self.store.update_message(existing.id, record)
        except DuplicateKeyError as e:
            raise StoreConflict(
                f"Update of message {existing.id} still conflicts: {e}"
            ) from e
        return UpsertOutcome(message_id=existing.id, created=False)

    def _write(self, tenant_id: str, record: MessageRecord) -> UpsertOutcome:
        existing = self.store.find_matching(tenant_id, record.uid, record.remote_id)
        if existing is not None:
            self.store.update_message(existing.id, record)
            logger.debug(f"Updated message {existing.id} (uid={record.uid})")
            return UpsertOutcome(message_id=existing.id, created=False)

        message_id = self.store.insert_message(tenant_id, record)
        logger.debug(f"Inserted message {message_id} (uid={record.uid})")
        return UpsertOutcome(message_id=message_id, created=True)
