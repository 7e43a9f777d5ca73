"""Forward-only migration runner for the archive schema.

Timestamps are stored as integer milliseconds since the epoch (UTC).
Embeddings are float32 BLOBs (see llm_archive.db.vectors). JSON columns
(blocks, key_points, source_passages) are encoded/decoded only inside
the Repository.
"""

from __future__ import annotations

import sqlite3

# Version ledger; exists before any migration runs.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    uuid            TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    summary         TEXT,
    created_at      INTEGER NOT NULL,
    updated_at      INTEGER NOT NULL,
    platform        TEXT NOT NULL DEFAULT 'claude',
    message_count   INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_conversations_created ON conversations(created_at);

CREATE TABLE IF NOT EXISTS messages (
    uuid                TEXT PRIMARY KEY,
    conversation_uuid   TEXT NOT NULL REFERENCES conversations(uuid) ON DELETE CASCADE,
    conversation_index  INTEGER NOT NULL,
    sender              TEXT NOT NULL CHECK (sender IN ('human', 'assistant')),
    text                TEXT NOT NULL,
    created_at          INTEGER NOT NULL,
    chunk_count         INTEGER NOT NULL DEFAULT 1,
    UNIQUE (conversation_uuid, conversation_index)
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_uuid);
CREATE INDEX IF NOT EXISTS idx_messages_created ON messages(created_at);

CREATE TABLE IF NOT EXISTS message_chunks (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    message_uuid    TEXT NOT NULL REFERENCES messages(uuid) ON DELETE CASCADE,
    chunk_index     INTEGER NOT NULL,
    text            TEXT NOT NULL,
    char_count      INTEGER NOT NULL,
    embedding       BLOB,
    UNIQUE (message_uuid, chunk_index)
);
CREATE INDEX IF NOT EXISTS idx_chunks_message ON message_chunks(message_uuid);

CREATE TABLE IF NOT EXISTS topics (
    topic_id         TEXT PRIMARY KEY,
    title            TEXT NOT NULL,
    summary          TEXT NOT NULL,
    key_points       TEXT NOT NULL DEFAULT '[]',
    source_passages  TEXT NOT NULL DEFAULT '[]',
    source_text      TEXT,
    pdf_id           TEXT NOT NULL,
    parent_topic_id  TEXT,
    depth            INTEGER NOT NULL DEFAULT 0,
    created_at       INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_topics_pdf ON topics(pdf_id);

-- source_type/source_id is a polymorphic reference with no foreign key:
-- a learning may outlive the conversation or topic it came from.
CREATE TABLE IF NOT EXISTS learnings (
    learning_id     TEXT PRIMARY KEY,
    title           TEXT NOT NULL,
    problem_space   TEXT NOT NULL,
    insight         TEXT NOT NULL,
    blocks          TEXT NOT NULL DEFAULT '[]',
    source_type     TEXT NOT NULL CHECK (source_type IN ('conversation', 'topic')),
    source_id       TEXT NOT NULL,
    embedding       BLOB,
    created_at      INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_learnings_created ON learnings(created_at);
CREATE INDEX IF NOT EXISTS idx_learnings_source ON learnings(source_type, source_id);

CREATE TABLE IF NOT EXISTS learning_reviews (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    learning_id     TEXT NOT NULL REFERENCES learnings(learning_id) ON DELETE CASCADE,
    block_index     INTEGER,
    rating          TEXT NOT NULL CHECK (rating IN ('again', 'hard', 'good', 'easy')),
    reviewed_at     INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reviews_learning ON learning_reviews(learning_id);
"""

# Append-only; each entry is (version, script). executescript() commits first.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def current_version(conn: sqlite3.Connection) -> int:
    """Highest applied migration, 0 for a fresh database."""
    (version,) = conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_version").fetchone()
    return version


def run_migrations(conn: sqlite3.Connection) -> None:
    """Bring *conn* up to the newest version. Safe to call at any version."""
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    applied = current_version(conn)
    for version, script in sorted(MIGRATIONS):
        if version <= applied:
            continue
        conn.executescript(script)
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
        conn.commit()
