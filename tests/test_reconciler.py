"""Tests for the store reconciler against a SQLite store."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from conversation_sync.db.types import DuplicateKeyError
from conversation_sync.engine.reconciler import StoreReconciler
from conversation_sync.errors import StoreConflict
from conversation_sync.models import Direction, MessageRecord


def _record(**overrides):
    values = dict(
        uid=1,
        remote_id="<m1@example.com>",
        thread_id="<m1@example.com>",
        subject="Hello",
        text="body",
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        flags=[],
    )
    values.update(overrides)
    return MessageRecord(**values)


def test_insert_then_update_same_uid(store):
    reconciler = StoreReconciler(store)

    first = reconciler.upsert("tenant-a", _record(flags=[]))
    second = reconciler.upsert("tenant-a", _record(flags=["\\Seen"]))

    assert first.created is True
    assert second.created is False
    assert second.message_id == first.message_id

    messages = store.list_messages("tenant-a")
    assert len(messages) == 1
    assert messages[0].flags == ["\\Seen"]
    assert messages[0].is_unread is False


def test_match_on_remote_id_when_uid_missing(store):
    reconciler = StoreReconciler(store)
    first = reconciler.upsert("tenant-a", _record(uid=None, direction=Direction.OUTBOUND))
    second = reconciler.upsert("tenant-a", _record(uid=7))

    assert second.message_id == first.message_id
    stored = store.get_message("tenant-a", first.message_id)
    assert stored.uid == 7


def test_update_keeps_existing_uid_when_record_has_none(store):
    reconciler = StoreReconciler(store)
    first = reconciler.upsert("tenant-a", _record(uid=3))
    reconciler.upsert("tenant-a", _record(uid=None, subject="Changed"))

    stored = store.get_message("tenant-a", first.message_id)
    assert stored.uid == 3
    assert stored.subject == "Changed"


@pytest.mark.parametrize("uid", [None, True, "abc", 0, -4])
def test_invalid_uid_is_coerced_to_none(store, uid):
    outcome = StoreReconciler(store).upsert("tenant-a", _record(uid=uid))
    assert store.get_message("tenant-a", outcome.message_id).uid is None


def test_requires_uid_or_remote_id(store):
    with pytest.raises(ValueError):
        StoreReconciler(store).upsert("tenant-a", _record(uid=None, remote_id=None))


def test_tenants_are_isolated(store):
    reconciler = StoreReconciler(store)
    a = reconciler.upsert("tenant-a", _record())
    b = reconciler.upsert("tenant-b", _record())

    assert a.created and b.created
    assert a.message_id != b.message_id
    assert len(store.list_messages("tenant-a")) == 1
    assert len(store.list_messages("tenant-b")) == 1


def test_duplicate_key_is_retried_as_update():
    store = MagicMock()
    existing = MagicMock(id=11)
    store.find_matching.side_effect = [None, existing]
    store.insert_message.side_effect = DuplicateKeyError("UNIQUE constraint failed")

    outcome = StoreReconciler(store).upsert("tenant-a", _record())

    assert outcome.message_id == 11
    assert outcome.created is False
    store.update_message.assert_called_once()


def test_second_duplicate_raises_store_conflict():
    store = MagicMock()
    store.find_matching.side_effect = [None, MagicMock(id=11)]
    store.insert_message.side_effect = DuplicateKeyError("UNIQUE constraint failed")
    store.update_message.side_effect = DuplicateKeyError("UNIQUE constraint failed")

    with pytest.raises(StoreConflict):
        StoreReconciler(store).upsert("tenant-a", _record())


def test_vanished_conflict_raises_store_conflict():
    store = MagicMock()
    store.find_matching.return_value = None
    store.insert_message.side_effect = DuplicateKeyError("UNIQUE constraint failed")

    with pytest.raises(StoreConflict):
        StoreReconciler(store).upsert("tenant-a", _record())


def test_unique_index_raises_duplicate_key(store):
    store.insert_message("tenant-a", _record())
    with pytest.raises(DuplicateKeyError):
        store.insert_message("tenant-a", _record(remote_id="<other@example.com>"))


def test_uid_match_preferred_over_remote_id(store):
    by_uid = store.insert_message("tenant-a", _record(uid=1, remote_id="<a@x>"))
    store.insert_message("tenant-a", _record(uid=2, remote_id="<b@x>"))

    match = store.find_matching("tenant-a", 1, "<b@x>")
    assert match.id == by_uid
