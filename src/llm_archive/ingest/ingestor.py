"""Conversation ingestion: chunk, embed, persist, index.

For each conversation not yet in the archive:
1. Chunk every message (``Chunker``, 3000 chars by default).
2. Embed each message's chunks with one ``embed_batch`` call.
3. Store conversation + messages in one transaction, then the chunks
   with their embedding BLOBs.
4. Insert the chunk vectors into the VectorStore, when one is given.

``reembed_missing()`` fills in vectors for chunks already archived without
one, which is how the archive recovers after ``purge-embeddings``.

Embedding happens before any write, so a failure leaves no partial
conversation behind and a rerun retries it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from llm_archive.db.models import Conversation, MessageChunk
from llm_archive.db.repository import Repository
from llm_archive.db.vectors import VectorStore
from llm_archive.ingest.chunking import Chunker
from llm_archive.rag.llm_client import Embedder

logger = logging.getLogger(__name__)


@dataclass
class IngestStats:
    conversations: int = 0
    messages: int = 0
    chunks: int = 0
    skipped: int = 0


class ConversationIngestor:
    """Write imported conversations into the archive.

    Args:
        repo: Open Repository.
        embedder: Embeds chunk texts.
        chunker: Splits message text; defaults to 3000-character windows.
        store: Chunk VectorStore updated in step with the database.
    """

    def __init__(
        self,
        repo: Repository,
        embedder: Embedder,
        chunker: Chunker | None = None,
        store: VectorStore | None = None,
    ) -> None:
        self.repo = repo
        self.embedder = embedder
        self.chunker = chunker or Chunker()
        self.store = store
        if store is not None:
            store.initialize(embedder.dimensions)

    def ingest(
        self,
        conversations: Iterable[Conversation],
        on_conversation: Callable[[Conversation, bool], None] | None = None,
    ) -> IngestStats:
        """Ingest *conversations*; already-archived uuids are skipped.

        Args:
            on_conversation: Called with ``(conversation, ingested)`` after each one.
        """
        stats = IngestStats()
        for conversation in conversations:
            ingested = self.ingest_one(conversation, stats)
            if on_conversation:
                on_conversation(conversation, ingested)
        logger.info(
            "Ingested %d conversations (%d messages, %d chunks), skipped %d",
            stats.conversations,
            stats.messages,
            stats.chunks,
            stats.skipped,
        )
        return stats

    def ingest_one(self, conversation: Conversation, stats: IngestStats | None = None) -> bool:
        """Ingest a single conversation. Returns False if it was already archived."""
        stats = stats if stats is not None else IngestStats()
        if self.repo.has_conversation(conversation.uuid):
            logger.debug("Skipping already ingested conversation %s", conversation.uuid)
            stats.skipped += 1
            return False

        chunks: list[MessageChunk] = []
        for message in conversation.messages:
            pieces = self.chunker.chunk(message.text)
            vectors = self.embedder.embed_batch([p.text for p in pieces])
            chunks.extend(
                MessageChunk(
                    message_uuid=message.uuid,
                    chunk_index=piece.index,
                    text=piece.text,
                    char_count=piece.char_count,
                    embedding=vector,
                )
                for piece, vector in zip(pieces, vectors)
            )

        self.repo.add_conversation(conversation)
        self.repo.add_chunks(chunks)
        if self.store is not None:
            self.store.insert_many((c.key, c.embedding) for c in chunks)

        stats.conversations += 1
        stats.messages += len(conversation.messages)
        stats.chunks += len(chunks)
        logger.debug(
            "Ingested %s: %d messages, %d chunks",
            conversation.uuid,
            len(conversation.messages),
            len(chunks),
        )
        return True

    def reembed_missing(self) -> int:
        """Embed archived chunks that have no vector (e.g. after ``purge-embeddings``).

        Chunks are embedded one message at a time, as on first ingestion, and
        each message's vectors are committed before the next is embedded, so
        an interrupted run can simply be repeated. Returns the number of
        chunks embedded.
        """
        by_message: dict[str, list[MessageChunk]] = {}
        for chunk in self.repo.chunks_missing_embedding():
            by_message.setdefault(chunk.message_uuid, []).append(chunk)

        embedded = 0
        for chunks in by_message.values():
            vectors = self.embedder.embed_batch([c.text for c in chunks])
            for chunk, vector in zip(chunks, vectors):
                chunk.embedding = vector
            embedded += self.repo.set_chunk_embeddings(chunks)
            if self.store is not None:
                self.store.insert_many((c.key, c.embedding) for c in chunks)
        if embedded:
            logger.info("Re-embedded %d chunks across %d messages", embedded, len(by_message))
        return embedded
