"""Backend-neutral message store.

Queries are written once with ``?`` placeholders; backends translate the
placeholder and supply connection handling, datetime and JSON encoding.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from conversation_sync.models import (
    Attachment,
    Direction,
    SEEN_FLAG,
    MessageRecord,
    StoredMessage,
)

_INSERT_COLUMNS = (
    "tenant_id",
    "uid",
    "remote_id",
    "thread_id",
    "from_addr",
    "to_addr",
    "cc_addr",
    "bcc_addr",
    "subject",
    "body_text",
    "body_html",
    "date",
    "direction",
    "in_reply_to",
    "reference_ids",
    "flags",
    "attachments",
    "is_unread",
    "has_attachments",
    "is_thread_starter",
    "thread_count",
    "last_message_at",
    "created_at",
    "updated_at",
)


class DuplicateKeyError(Exception):
    """A write hit the (tenant, uid) or (tenant, remote_id) unique index."""


class MessageStore(ABC):
    """Tenant scoped persistence for messages."""

    placeholder = "?"

    @abstractmethod
    def initialize(self) -> None:
        """Create tables and indexes."""

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def _query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a SELECT and return rows as dicts."""

    @abstractmethod
    def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write, commit, and return the affected row count.

        Raises:
            DuplicateKeyError: If a unique index is violated
        """

    @abstractmethod
    def _insert(self, sql: str, params: Sequence[Any]) -> int:
        """Run an INSERT into messages, commit, and return the new id.

        Raises:
            DuplicateKeyError: If a unique index is violated
        """

    @abstractmethod
    def _encode_datetime(self, value: Optional[datetime]) -> Any: ...

    @abstractmethod
    def _decode_datetime(self, value: Any) -> Optional[datetime]: ...

    def _encode_json(self, value: Any) -> Any:
        return json.dumps(value)

    def _decode_json(self, value: Any, default: Any) -> Any:
        if value is None:
            return default
        if isinstance(value, (str, bytes)):
            try:
                return json.loads(value)
            except ValueError:
                return default
        return value

    def _sql(self, sql: str) -> str:
        if self.placeholder == "?":
            return sql
        return sql.replace("?", self.placeholder)

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_message(self, row: dict[str, Any]) -> StoredMessage:
        attachments = [
            Attachment.from_dict(a)
            for a in self._decode_json(row.get("attachments"), [])
            if isinstance(a, dict)
        ]
        return StoredMessage(
            id=int(row["id"]),
            tenant_id=row["tenant_id"],
            uid=row.get("uid"),
            remote_id=row.get("remote_id"),
            thread_id=row["thread_id"],
            from_addr=row.get("from_addr") or "",
            to_addr=row.get("to_addr") or "",
            cc_addr=row.get("cc_addr") or "",
            bcc_addr=row.get("bcc_addr") or "",
            subject=row.get("subject") or "",
            text=row.get("body_text") or "",
            html=row.get("body_html") or "",
            date=self._decode_datetime(row["date"]) or datetime.now(timezone.utc),
            direction=Direction.from_string(row.get("direction") or "inbound"),
            in_reply_to=row.get("in_reply_to"),
            references=list(self._decode_json(row.get("reference_ids"), [])),
            flags=list(self._decode_json(row.get("flags"), [])),
            attachments=attachments,
            is_thread_starter=bool(row.get("is_thread_starter")),
            thread_count=int(row.get("thread_count") or 0),
            last_message_at=self._decode_datetime(row.get("last_message_at")),
            created_at=self._decode_datetime(row.get("created_at")),
            updated_at=self._decode_datetime(row.get("updated_at")),
        )

    def _content_params(self, record: MessageRecord) -> dict[str, Any]:
        return {
            "thread_id": record.thread_id,
            "from_addr": record.from_addr or "",
            "to_addr": record.to_addr or "",
            "cc_addr": record.cc_addr or "",
            "bcc_addr": record.bcc_addr or "",
            "subject": record.subject or "",
            "body_text": record.text or "",
            "body_html": record.html or "",
            "date": self._encode_datetime(record.date),
            "direction": record.direction.value,
            "in_reply_to": record.in_reply_to,
            "reference_ids": self._encode_json(list(record.references)),
            "flags": self._encode_json(list(record.flags)),
            "attachments": self._encode_json(
                [a.to_dict() for a in record.attachments]
            ),
            "is_unread": record.is_unread,
            "has_attachments": record.has_attachments,
        }

    @staticmethod
    def _search_clause(search: Optional[str]) -> tuple[str, list[Any]]:
        """Case-insensitive substring filter. Backends fold ``LOWER()`` like ``str.lower()``."""
        if not search or not search.strip():
            return "", []
        term = search.strip().lower()
        term = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{term}%"
        columns = ("subject", "from_addr", "to_addr", "body_text")
        clause = " OR ".join(f"LOWER({col}) LIKE ? ESCAPE '\\'" for col in columns)
        return f" AND ({clause})", [pattern] * len(columns)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_remote_id(
        self, tenant_id: str, remote_id: str
    ) -> Optional[StoredMessage]:
        if not remote_id:
            return None
        rows = self._query(
            self._sql("SELECT * FROM messages WHERE tenant_id = ? AND remote_id = ?"),
            (tenant_id, remote_id),
        )
        return self._row_to_message(rows[0]) if rows else None

    def find_by_uid(self, tenant_id: str, uid: int) -> Optional[StoredMessage]:
        rows = self._query(
            self._sql("SELECT * FROM messages WHERE tenant_id = ? AND uid = ?"),
            (tenant_id, uid),
        )
        return self._row_to_message(rows[0]) if rows else None

    def find_matching(
        self, tenant_id: str, uid: Optional[int], remote_id: Optional[str]
    ) -> Optional[StoredMessage]:
        """Find the row matching ``uid`` or ``remote_id``; a uid match wins."""
        conditions = []
        params: list[Any] = [tenant_id]
        if uid is not None:
            conditions.append("uid = ?")
            params.append(uid)
        if remote_id:
            conditions.append("remote_id = ?")
            params.append(remote_id)
        if not conditions:
            return None

        order = "id"
        if uid is not None:
            order = "CASE WHEN uid = ? THEN 0 ELSE 1 END, id"
            params.append(uid)

        rows = self._query(
            self._sql(
                f"SELECT * FROM messages WHERE tenant_id = ? AND ({' OR '.join(conditions)}) "
                f"ORDER BY {order} LIMIT 1"
            ),
            params,
        )
        return self._row_to_message(rows[0]) if rows else None

    def get_message(self, tenant_id: str, message_id: int) -> Optional[StoredMessage]:
        rows = self._query(
            self._sql("SELECT * FROM messages WHERE tenant_id = ? AND id = ?"),
            (tenant_id, message_id),
        )
        return self._row_to_message(rows[0]) if rows else None

    def get_thread_messages(self, tenant_id: str, thread_id: str) -> list[StoredMessage]:
        """All messages of a thread, oldest first."""
        rows = self._query(
            self._sql(
                "SELECT * FROM messages WHERE tenant_id = ? AND thread_id = ? "
                "ORDER BY date ASC, id ASC"
            ),
            (tenant_id, thread_id),
        )
        return [self._row_to_message(row) for row in rows]

    def list_messages(self, tenant_id: str) -> list[StoredMessage]:
        rows = self._query(
            self._sql(
                "SELECT * FROM messages WHERE tenant_id = ? ORDER BY date ASC, id ASC"
            ),
            (tenant_id,),
        )
        return [self._row_to_message(row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_message(self, tenant_id: str, record: MessageRecord) -> int:
        now = self._encode_datetime(datetime.now(timezone.utc))
        values = {
            "tenant_id": tenant_id,
            "uid": record.uid,
            "remote_id": record.remote_id,
            **self._content_params(record),
            "is_thread_starter": False,
            "thread_count": 1,
            "last_message_at": self._encode_datetime(record.date),
            "created_at": now,
            "updated_at": now,
        }
        placeholders = ", ".join("?" * len(_INSERT_COLUMNS))
        return self._insert(
            self._sql(
                f"INSERT INTO messages ({', '.join(_INSERT_COLUMNS)}) VALUES ({placeholders})"
            ),
            [values[col] for col in _INSERT_COLUMNS],
        )

    def update_message(self, message_id: int, record: MessageRecord) -> int:
        """Refresh a stored row in place.

        ``uid`` and ``remote_id`` are only written when the record carries
        them, so an existing identity is never overwritten with NULL.
        """
        values = self._content_params(record)
        if record.uid is not None:
            values["uid"] = record.uid
        if record.remote_id:
            values["remote_id"] = record.remote_id
        values["updated_at"] = self._encode_datetime(datetime.now(timezone.utc))

        assignments = ", ".join(f"{col} = ?" for col in values)
        return self._execute(
            self._sql(f"UPDATE messages SET {assignments} WHERE id = ?"),
            [*values.values(), message_id],
        )

    def update_thread_id(self, message_id: int, thread_id: str) -> int:
        return self._execute(
            self._sql("UPDATE messages SET thread_id = ?, updated_at = ? WHERE id = ?"),
            (thread_id, self._encode_datetime(datetime.now(timezone.utc)), message_id),
        )

    def update_thread_stats(
        self,
        tenant_id: str,
        thread_id: str,
        thread_count: int,
        last_message_at: datetime,
        starter_id: int,
    ) -> int:
        """Write count, last activity and the starter flag for a whole thread."""
        return self._execute(
            self._sql(
                "UPDATE messages SET thread_count = ?, last_message_at = ?, "
                "is_thread_starter = (id = ?) "
                "WHERE tenant_id = ? AND thread_id = ?"
            ),
            (
                thread_count,
                self._encode_datetime(last_message_at),
                starter_id,
                tenant_id,
                thread_id,
            ),
        )

    def update_flags(self, tenant_id: str, uid: int, flags: list[str]) -> int:
        return self._execute(
            self._sql(
                "UPDATE messages SET flags = ?, is_unread = ?, updated_at = ? "
                "WHERE tenant_id = ? AND uid = ?"
            ),
            (
                self._encode_json(list(flags)),
                SEEN_FLAG not in flags,
                self._encode_datetime(datetime.now(timezone.utc)),
                tenant_id,
                uid,
            ),
        )

    # ------------------------------------------------------------------
    # Conversation queries
    # ------------------------------------------------------------------

    def count_threads(self, tenant_id: str, search: Optional[str] = None) -> int:
        clause, params = self._search_clause(search)
        rows = self._query(
            self._sql(
                "SELECT COUNT(DISTINCT thread_id) AS total FROM messages "
                f"WHERE tenant_id = ?{clause}"
            ),
            [tenant_id, *params],
        )
        return int(rows[0]["total"] or 0) if rows else 0

    def page_thread_ids(
        self,
        tenant_id: str,
        limit: int,
        offset: int,
        search: Optional[str] = None,
    ) -> list[str]:
        """Thread ids ordered by latest message, newest first."""
        clause, params = self._search_clause(search)
        rows = self._query(
            self._sql(
                "SELECT thread_id, MAX(date) AS latest FROM messages "
                f"WHERE tenant_id = ?{clause} "
                "GROUP BY thread_id ORDER BY latest DESC, thread_id ASC "
                "LIMIT ? OFFSET ?"
            ),
            [tenant_id, *params, limit, offset],
        )
        return [row["thread_id"] for row in rows]

    def get_messages_in_threads(
        self,
        tenant_id: str,
        thread_ids: Sequence[str],
        search: Optional[str] = None,
    ) -> list[StoredMessage]:
        if not thread_ids:
            return []
        clause, params = self._search_clause(search)
        placeholders = ",".join("?" * len(thread_ids))
        rows = self._query(
            self._sql(
                "SELECT * FROM messages "
                f"WHERE tenant_id = ? AND thread_id IN ({placeholders}){clause} "
                "ORDER BY date DESC, id DESC"
            ),
            [tenant_id, *thread_ids, *params],
        )
        return [self._row_to_message(row) for row in rows]

    def message_counts(self, tenant_id: str) -> dict[str, int]:
        rows = self._query(
            self._sql(
                """
                SELECT
                    COUNT(*) AS total_messages,
                    COUNT(DISTINCT thread_id) AS total_threads,
                    SUM(CASE WHEN is_unread THEN 1 ELSE 0 END) AS unread_messages,
                    SUM(CASE WHEN direction = 'inbound' THEN 1 ELSE 0 END) AS inbound_messages,
                    SUM(CASE WHEN direction = 'outbound' THEN 1 ELSE 0 END) AS outbound_messages,
                    SUM(CASE WHEN has_attachments THEN 1 ELSE 0 END) AS with_attachments
                FROM messages
                WHERE tenant_id = ?
                """
            ),
            (tenant_id,),
        )
        row = rows[0] if rows else {}
        return {key: int(value or 0) for key, value in row.items()}

    def message_dates_since(self, tenant_id: str, since: datetime) -> list[datetime]:
        rows = self._query(
            self._sql(
                "SELECT date FROM messages WHERE tenant_id = ? AND date >= ? ORDER BY date"
            ),
            (tenant_id, self._encode_datetime(since)),
        )
        dates = [self._decode_datetime(row["date"]) for row in rows]
        return [d for d in dates if d is not None]
