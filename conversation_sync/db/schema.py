"""DDL for the messages table, per backend."""

SQLITE_MESSAGES_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id TEXT NOT NULL,
    uid INTEGER,
    remote_id TEXT,
    thread_id TEXT NOT NULL CHECK (thread_id <> ''),
    from_addr TEXT NOT NULL DEFAULT '',
    to_addr TEXT NOT NULL DEFAULT '',
    cc_addr TEXT NOT NULL DEFAULT '',
    bcc_addr TEXT NOT NULL DEFAULT '',
    subject TEXT NOT NULL DEFAULT '',
    body_text TEXT NOT NULL DEFAULT '',
    body_html TEXT NOT NULL DEFAULT '',
    date TEXT NOT NULL,
    direction TEXT NOT NULL DEFAULT 'inbound',
    in_reply_to TEXT,
    reference_ids TEXT NOT NULL DEFAULT '[]',
    flags TEXT NOT NULL DEFAULT '[]',
    attachments TEXT NOT NULL DEFAULT '[]',
    is_unread BOOLEAN NOT NULL DEFAULT 1,
    has_attachments BOOLEAN NOT NULL DEFAULT 0,
    is_thread_starter BOOLEAN NOT NULL DEFAULT 0,
    thread_count INTEGER NOT NULL DEFAULT 1,
    last_message_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

POSTGRES_MESSAGES_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    id BIGSERIAL PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    uid BIGINT,
    remote_id TEXT,
    thread_id TEXT NOT NULL CHECK (thread_id <> ''),
    from_addr TEXT NOT NULL DEFAULT '',
    to_addr TEXT NOT NULL DEFAULT '',
    cc_addr TEXT NOT NULL DEFAULT '',
    bcc_addr TEXT NOT NULL DEFAULT '',
    subject TEXT NOT NULL DEFAULT '',
    body_text TEXT NOT NULL DEFAULT '',
    body_html TEXT NOT NULL DEFAULT '',
    date TIMESTAMPTZ NOT NULL,
    direction TEXT NOT NULL DEFAULT 'inbound',
    in_reply_to TEXT,
    reference_ids JSONB NOT NULL DEFAULT '[]'::jsonb,
    flags JSONB NOT NULL DEFAULT '[]'::jsonb,
    attachments JSONB NOT NULL DEFAULT '[]'::jsonb,
    is_unread BOOLEAN NOT NULL DEFAULT TRUE,
    has_attachments BOOLEAN NOT NULL DEFAULT FALSE,
    is_thread_starter BOOLEAN NOT NULL DEFAULT FALSE,
    thread_count INTEGER NOT NULL DEFAULT 1,
    last_message_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
)
"""

# Partial unique indexes: rows without a uid (outbound) or without a
# Message-ID never collide on NULL.
MESSAGE_INDEXES = [
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_tenant_uid
    ON messages(tenant_id, uid) WHERE uid IS NOT NULL
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_tenant_remote_id
    ON messages(tenant_id, remote_id) WHERE remote_id IS NOT NULL
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_tenant_thread ON messages(tenant_id, thread_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_tenant_date ON messages(tenant_id, date)",
    "CREATE INDEX IF NOT EXISTS idx_messages_in_reply_to ON messages(tenant_id, in_reply_to)",
]
