"""Repository pattern for all llm-archive database operations.

Single interface for: conversations, messages, message chunks, topics,
learnings and learning reviews, plus hydration of in-memory VectorStores
from stored embedding BLOBs.

JSON columns (learning blocks, topic key points and source passages) are
encoded and decoded here only; callers always see typed models.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable
from datetime import datetime, timezone

from llm_archive.db.models import (
    BlockType,
    ContentBlock,
    Conversation,
    ConversationSummary,
    Learning,
    LearningPage,
    LearningReview,
    Message,
    MessageChunk,
    ResolvedSource,
    ReviewRating,
    SourceRef,
    Topic,
    chunk_key,
    source_ref,
)
from llm_archive.db.vectors import VectorStore, deserialize_embedding, serialize_embedding

_LEARNING_COLUMNS = (
    "learning_id, title, problem_space, insight, blocks, source_type, source_id, created_at"
)
_MESSAGE_COLUMNS = "uuid, conversation_uuid, conversation_index, sender, text, created_at"
_TOPIC_COLUMNS = (
    "topic_id, title, summary, key_points, source_passages, source_text, pdf_id, "
    "parent_topic_id, depth, created_at"
)


class Repository:
    """Data access layer for all archive entities.

    Wraps an open sqlite3.Connection. The connection is owned by the
    caller and must be closed after use. Multi-row writes run in a single
    transaction; single-row writes commit immediately.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see llm_archive.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def add_conversation(self, conversation: Conversation) -> None:
        """Insert a conversation and all of its messages in one transaction.

        ``message_count`` is taken from ``len(conversation.messages)``.

        Raises:
            sqlite3.IntegrityError: If the uuid already exists or two
                messages share a ``conversation_index``.
        """
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO conversations
                    (uuid, name, summary, created_at, updated_at, platform, message_count)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    conversation.uuid,
                    conversation.title,
                    conversation.summary,
                    _to_ms(conversation.created_at),
                    _to_ms(conversation.updated_at),
                    conversation.platform,
                    len(conversation.messages),
                ),
            )
            self._conn.executemany(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (
                        m.uuid,
                        m.conversation_uuid,
                        m.conversation_index,
                        m.sender,
                        m.text,
                        _to_ms(m.created_at),
                    )
                    for m in conversation.messages
                ],
            )

    def has_conversation(self, uuid: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM conversations WHERE uuid = ?", (uuid,)
        ).fetchone()
        return row is not None

    def get_conversation(self, uuid: str, with_messages: bool = True) -> Conversation | None:
        """Return a conversation by uuid, or None if not found.

        Args:
            uuid: Conversation uuid.
            with_messages: Also load its messages ordered by index.
        """
        row = self._conn.execute(
            """
            SELECT uuid, name, summary, created_at, updated_at, platform, message_count
            FROM conversations WHERE uuid = ?
            """,
            (uuid,),
        ).fetchone()
        if row is None:
            return None
        conversation = _row_to_conversation(row)
        if with_messages:
            conversation.messages = self.get_messages(uuid)
        return conversation

    def get_conversation_summary(self, uuid: str) -> ConversationSummary | None:
        row = self._conn.execute(
            "SELECT uuid, name, summary, created_at, platform FROM conversations WHERE uuid = ?",
            (uuid,),
        ).fetchone()
        if row is None:
            return None
        return ConversationSummary(
            uuid=row["uuid"],
            title=row["name"],
            created_at=_from_ms(row["created_at"]),
            platform=row["platform"],
            summary=row["summary"],
        )

    def list_conversation_uuids(self, limit: int | None = None) -> list[str]:
        """Return conversation uuids, most recent first."""
        sql = "SELECT uuid FROM conversations ORDER BY created_at DESC, uuid"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        return [r["uuid"] for r in self._conn.execute(sql, params).fetchall()]

    def conversation_uuids_by_date_range(self, start: datetime, end: datetime) -> list[str]:
        """Return uuids of conversations created within [start, end], oldest first."""
        rows = self._conn.execute(
            """
            SELECT uuid FROM conversations
            WHERE created_at >= ? AND created_at <= ?
            ORDER BY created_at, uuid
            """,
            (_to_ms(start), _to_ms(end)),
        ).fetchall()
        return [r["uuid"] for r in rows]

    def random_conversation(self) -> Conversation | None:
        row = self._conn.execute(
            "SELECT uuid FROM conversations ORDER BY RANDOM() LIMIT 1"
        ).fetchone()
        return self.get_conversation(row["uuid"]) if row else None

    def count_conversations(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM conversations").fetchone()[0]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def get_message(self, uuid: str) -> Message | None:
        row = self._conn.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE uuid = ?", (uuid,)
        ).fetchone()
        return _row_to_message(row) if row else None

    def get_messages(self, conversation_uuid: str) -> list[Message]:
        """Return all messages of a conversation ordered by conversation_index."""
        rows = self._conn.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE conversation_uuid = ? ORDER BY conversation_index
            """,
            (conversation_uuid,),
        ).fetchall()
        return [_row_to_message(r) for r in rows]

    def get_context_messages(
        self, message: Message, before: int, after: int
    ) -> tuple[list[Message], list[Message]]:
        """Return up to *before* preceding and *after* following siblings of *message*.

        Both lists are ordered by ascending conversation_index.
        """
        idx = message.conversation_index
        previous: list[Message] = []
        following: list[Message] = []
        if before > 0:
            previous = self._messages_in_range(
                message.conversation_uuid, max(0, idx - before), idx - 1
            )
        if after > 0:
            following = self._messages_in_range(message.conversation_uuid, idx + 1, idx + after)
        return previous, following

    def count_messages(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]

    def _messages_in_range(self, conversation_uuid: str, start: int, end: int) -> list[Message]:
        if end < start:
            return []
        rows = self._conn.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE conversation_uuid = ? AND conversation_index BETWEEN ? AND ?
            ORDER BY conversation_index
            """,
            (conversation_uuid, start, end),
        ).fetchall()
        return [_row_to_message(r) for r in rows]

    # ------------------------------------------------------------------
    # Message chunks
    # ------------------------------------------------------------------

    def add_chunks(self, chunks: Iterable[MessageChunk]) -> int:
        """Insert message chunks (with their embeddings, if set). Returns the count."""
        params = [
            (
                c.message_uuid,
                c.chunk_index,
                c.text,
                c.char_count,
                serialize_embedding(c.embedding) if c.embedding is not None else None,
            )
            for c in chunks
        ]
        with self._conn:
            self._conn.executemany(
                """
                INSERT INTO message_chunks (message_uuid, chunk_index, text, char_count, embedding)
                VALUES (?, ?, ?, ?, ?)
                """,
                params,
            )
            for message_uuid in {p[0] for p in params}:
                self._conn.execute(
                    """
                    UPDATE messages SET chunk_count =
                        (SELECT COUNT(*) FROM message_chunks WHERE message_uuid = ?)
                    WHERE uuid = ?
                    """,
                    (message_uuid, message_uuid),
                )
        return len(params)

    def get_chunks(self, message_uuid: str) -> list[MessageChunk]:
        rows = self._conn.execute(
            """
            SELECT message_uuid, chunk_index, text, char_count, embedding
            FROM message_chunks WHERE message_uuid = ? ORDER BY chunk_index
            """,
            (message_uuid,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, embedded_only: bool = False) -> int:
        sql = "SELECT COUNT(*) FROM message_chunks"
        if embedded_only:
            sql += " WHERE embedding IS NOT NULL"
        return self._conn.execute(sql).fetchone()[0]

    def load_chunk_vectors(self, store: VectorStore) -> int:
        """Insert every stored chunk embedding into *store*, keyed by chunk key.

        Chunks are loaded in insertion order so that ties in search keep it.

        Raises:
            ConfigurationError: If a stored vector's length differs from
                ``store.dimensions`` (embeddings from another model).
        """
        rows = self._conn.execute(
            """
            SELECT message_uuid, chunk_index, embedding FROM message_chunks
            WHERE embedding IS NOT NULL ORDER BY id
            """
        ).fetchall()
        return store.insert_many(
            (
                chunk_key(r["message_uuid"], r["chunk_index"]),
                deserialize_embedding(r["embedding"], store.dimensions),
            )
            for r in rows
        )

    def clear_embeddings(self) -> int:
        """Drop every stored chunk and learning embedding.

        Needed before re-embedding with a model of another dimensionality.
        Returns the number of rows cleared.
        """
        with self._conn:
            chunks = self._conn.execute(
                "UPDATE message_chunks SET embedding = NULL WHERE embedding IS NOT NULL"
            ).rowcount
            learnings = self._conn.execute(
                "UPDATE learnings SET embedding = NULL WHERE embedding IS NOT NULL"
            ).rowcount
        return chunks + learnings

    def chunks_missing_embedding(self) -> list[MessageChunk]:
        """Chunks stored without a vector, in insertion order."""
        rows = self._conn.execute(
            """
            SELECT message_uuid, chunk_index, text, char_count, embedding
            FROM message_chunks WHERE embedding IS NULL ORDER BY id
            """
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def set_chunk_embeddings(self, chunks: Iterable[MessageChunk]) -> int:
        """Write the embedding of each given chunk in one transaction.

        Chunks whose ``embedding`` is None are ignored. Returns the number written.
        """
        params = [
            (serialize_embedding(c.embedding), c.message_uuid, c.chunk_index)
            for c in chunks
            if c.embedding is not None
        ]
        with self._conn:
            self._conn.executemany(
                "UPDATE message_chunks SET embedding = ? WHERE message_uuid = ? AND chunk_index = ?",
                params,
            )
        return len(params)

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    def add_topic(self, topic: Topic) -> None:
        self._conn.execute(
            f"INSERT INTO topics ({_TOPIC_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                topic.topic_id,
                topic.title,
                topic.summary,
                json.dumps(topic.key_points),
                json.dumps(topic.source_passages),
                topic.source_text,
                topic.pdf_id,
                topic.parent_topic_id,
                topic.depth,
                _to_ms(topic.created_at),
            ),
        )
        self._conn.commit()

    def get_topic(self, topic_id: str) -> Topic | None:
        row = self._conn.execute(
            f"SELECT {_TOPIC_COLUMNS} FROM topics WHERE topic_id = ?", (topic_id,)
        ).fetchone()
        return _row_to_topic(row) if row else None

    def get_topics_by_pdf(self, pdf_id: str) -> list[Topic]:
        """Return a PDF's topics, parents before children."""
        rows = self._conn.execute(
            f"SELECT {_TOPIC_COLUMNS} FROM topics WHERE pdf_id = ? ORDER BY depth, created_at",
            (pdf_id,),
        ).fetchall()
        return [_row_to_topic(r) for r in rows]

    def list_topic_ids(self) -> list[str]:
        rows = self._conn.execute("SELECT topic_id FROM topics ORDER BY created_at").fetchall()
        return [r["topic_id"] for r in rows]

    # ------------------------------------------------------------------
    # Learnings
    # ------------------------------------------------------------------

    def add_learnings(self, learnings: Iterable[Learning]) -> int:
        """Insert learnings (with their embeddings) in a single transaction.

        Returns:
            Number of learnings inserted.
        """
        params = [
            (
                lrn.learning_id,
                lrn.title,
                lrn.problem_space,
                lrn.insight,
                _blocks_to_json(lrn.blocks),
                lrn.source_type,
                lrn.source_id,
                serialize_embedding(lrn.embedding) if lrn.embedding is not None else None,
                _to_ms(lrn.created_at),
            )
            for lrn in learnings
        ]
        with self._conn:
            self._conn.executemany(
                """
                INSERT INTO learnings
                    (learning_id, title, problem_space, insight, blocks,
                     source_type, source_id, embedding, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                params,
            )
        return len(params)

    def get_learning(self, learning_id: str) -> Learning | None:
        row = self._conn.execute(
            f"SELECT {_LEARNING_COLUMNS} FROM learnings WHERE learning_id = ?", (learning_id,)
        ).fetchone()
        return _row_to_learning(row) if row else None

    def get_learnings(self, learning_ids: Iterable[str]) -> dict[str, Learning]:
        """Return ``{learning_id: Learning}`` for the ids that exist."""
        ids = list(learning_ids)
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        rows = self._conn.execute(
            f"SELECT {_LEARNING_COLUMNS} FROM learnings WHERE learning_id IN ({placeholders})",
            ids,
        ).fetchall()
        return {r["learning_id"]: _row_to_learning(r) for r in rows}

    def get_learnings_by_source(self, source_type: str, source_id: str) -> list[Learning]:
        rows = self._conn.execute(
            f"""
            SELECT {_LEARNING_COLUMNS} FROM learnings
            WHERE source_type = ? AND source_id = ? ORDER BY created_at, learning_id
            """,
            (source_type, source_id),
        ).fetchall()
        return [_row_to_learning(r) for r in rows]

    def has_learnings(self, source_type: str, source_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM learnings WHERE source_type = ? AND source_id = ? LIMIT 1",
            (source_type, source_id),
        ).fetchone()
        return row is not None

    def delete_learnings_by_source(self, source_type: str, source_id: str) -> list[str]:
        """Delete every learning for ``(source_type, source_id)``.

        Returns:
            The deleted learning ids (so callers can drop them from a VectorStore).
        """
        with self._conn:
            ids = [
                r["learning_id"]
                for r in self._conn.execute(
                    "SELECT learning_id FROM learnings WHERE source_type = ? AND source_id = ?",
                    (source_type, source_id),
                ).fetchall()
            ]
            self._conn.execute(
                "DELETE FROM learnings WHERE source_type = ? AND source_id = ?",
                (source_type, source_id),
            )
        return ids

    def list_learnings(self, limit: int = 20, offset: int = 0) -> LearningPage:
        """Return one page of learnings, most recent first."""
        total = self.count_learnings()
        rows = self._conn.execute(
            f"""
            SELECT {_LEARNING_COLUMNS} FROM learnings
            ORDER BY created_at DESC, learning_id LIMIT ? OFFSET ?
            """,
            (limit, offset),
        ).fetchall()
        return LearningPage(
            learnings=[_row_to_learning(r) for r in rows],
            total=total,
            has_more=offset + len(rows) < total,
        )

    def random_learning(self) -> Learning | None:
        row = self._conn.execute(
            f"SELECT {_LEARNING_COLUMNS} FROM learnings ORDER BY RANDOM() LIMIT 1"
        ).fetchone()
        return _row_to_learning(row) if row else None

    def count_learnings(self, source_type: str | None = None) -> int:
        if source_type is None:
            return self._conn.execute("SELECT COUNT(*) FROM learnings").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM learnings WHERE source_type = ?", (source_type,)
        ).fetchone()[0]

    def load_learning_vectors(self, store: VectorStore) -> int:
        """Insert every stored learning embedding into *store*, keyed by learning_id.

        Raises:
            ConfigurationError: On a dimension mismatch with ``store.dimensions``.
        """
        rows = self._conn.execute(
            """
            SELECT learning_id, embedding FROM learnings
            WHERE embedding IS NOT NULL ORDER BY created_at, learning_id
            """
        ).fetchall()
        return store.insert_many(
            (r["learning_id"], deserialize_embedding(r["embedding"], store.dimensions))
            for r in rows
        )

    def learnings_missing_embedding(self) -> list[Learning]:
        rows = self._conn.execute(
            f"""
            SELECT {_LEARNING_COLUMNS} FROM learnings
            WHERE embedding IS NULL ORDER BY created_at, learning_id
            """
        ).fetchall()
        return [_row_to_learning(r) for r in rows]

    def set_learning_embeddings(self, learnings: Iterable[Learning]) -> int:
        """Write each learning's embedding in one transaction; None is skipped."""
        params = [
            (serialize_embedding(lrn.embedding), lrn.learning_id)
            for lrn in learnings
            if lrn.embedding is not None
        ]
        with self._conn:
            self._conn.executemany(
                "UPDATE learnings SET embedding = ? WHERE learning_id = ?", params
            )
        return len(params)

    def resolve_source(self, ref: SourceRef) -> ResolvedSource | None:
        """Look up a learning's source. None means it no longer exists (orphan)."""
        if ref.source_type == "conversation":
            row = self._conn.execute(
                "SELECT name AS title, created_at FROM conversations WHERE uuid = ?",
                (ref.source_id,),
            ).fetchone()
        else:
            row = self._conn.execute(
                "SELECT title, created_at FROM topics WHERE topic_id = ?", (ref.source_id,)
            ).fetchone()
        if row is None:
            return None
        return ResolvedSource(ref=ref, title=row["title"], created_at=_from_ms(row["created_at"]))

    # ------------------------------------------------------------------
    # Learning reviews
    # ------------------------------------------------------------------

    def record_review(self, review: LearningReview) -> int:
        """Store a flashcard rating. Returns the new review id."""
        cur = self._conn.execute(
            """
            INSERT INTO learning_reviews (learning_id, block_index, rating, reviewed_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                review.learning_id,
                review.block_index,
                ReviewRating(review.rating).value,
                _to_ms(review.reviewed_at),
            ),
        )
        self._conn.commit()
        return cur.lastrowid

    def get_reviews(self, learning_id: str) -> list[LearningReview]:
        rows = self._conn.execute(
            """
            SELECT id, learning_id, block_index, rating, reviewed_at
            FROM learning_reviews WHERE learning_id = ? ORDER BY reviewed_at, id
            """,
            (learning_id,),
        ).fetchall()
        return [
            LearningReview(
                id=r["id"],
                learning_id=r["learning_id"],
                block_index=r["block_index"],
                rating=ReviewRating(r["rating"]),
                reviewed_at=_from_ms(r["reviewed_at"]),
            )
            for r in rows
        ]


# ------------------------------------------------------------------
# Timestamp + JSON codecs
# ------------------------------------------------------------------

def _to_ms(value: datetime) -> int:
    # naive datetimes are taken as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _blocks_to_json(blocks: list[ContentBlock]) -> str:
    return json.dumps(
        [
            {"block_type": BlockType(b.block_type).value, "question": b.question, "answer": b.answer}
            for b in blocks
        ]
    )


def _blocks_from_json(raw: str) -> list[ContentBlock]:
    return [
        ContentBlock(
            block_type=BlockType(item["block_type"]),
            question=item["question"],
            answer=item["answer"],
        )
        for item in json.loads(raw or "[]")
    ]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        uuid=row["uuid"],
        title=row["name"],
        summary=row["summary"],
        created_at=_from_ms(row["created_at"]),
        updated_at=_from_ms(row["updated_at"]),
        platform=row["platform"],
        message_count=row["message_count"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        uuid=row["uuid"],
        conversation_uuid=row["conversation_uuid"],
        conversation_index=row["conversation_index"],
        sender=row["sender"],
        text=row["text"],
        created_at=_from_ms(row["created_at"]),
    )


def _row_to_chunk(row: sqlite3.Row) -> MessageChunk:
    blob = row["embedding"]
    return MessageChunk(
        message_uuid=row["message_uuid"],
        chunk_index=row["chunk_index"],
        text=row["text"],
        char_count=row["char_count"],
        embedding=deserialize_embedding(blob) if blob is not None else None,
    )


def _row_to_topic(row: sqlite3.Row) -> Topic:
    return Topic(
        topic_id=row["topic_id"],
        title=row["title"],
        summary=row["summary"],
        key_points=json.loads(row["key_points"]),
        source_passages=json.loads(row["source_passages"]),
        source_text=row["source_text"],
        pdf_id=row["pdf_id"],
        parent_topic_id=row["parent_topic_id"],
        depth=row["depth"],
        created_at=_from_ms(row["created_at"]),
    )


def _row_to_learning(row: sqlite3.Row) -> Learning:
    return Learning(
        learning_id=row["learning_id"],
        title=row["title"],
        problem_space=row["problem_space"],
        insight=row["insight"],
        blocks=_blocks_from_json(row["blocks"]),
        source=source_ref(row["source_type"], row["source_id"]),
        created_at=_from_ms(row["created_at"]),
    )
