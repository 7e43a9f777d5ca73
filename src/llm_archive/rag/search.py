"""Semantic search over archived messages and distilled learnings.

Both engines embed the query, scan an in-memory VectorStore, then apply
filters to the candidates. Filters run *after* the vector search, so a
selective filter can return fewer than ``limit`` results.

Message search:
  - store ids are chunk keys "{message_uuid}:{chunk_index}"
  - several chunks of one message collapse to its best-scoring hit
  - each hit carries up to ``context_before`` / ``context_after`` siblings
Learning search:
  - over-fetches ``limit * 2`` candidates before filtering
  - each hit resolves its source; None marks an orphaned learning
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import numpy as np

from llm_archive.db.models import (
    ConversationSummary,
    Learning,
    Message,
    ResolvedSource,
    split_chunk_key,
)
from llm_archive.db.repository import Repository
from llm_archive.db.vectors import VectorSearchResult, VectorStore
from llm_archive.errors import ValidationError
from llm_archive.rag.llm_client import Embedder

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
DEFAULT_CONTEXT_BEFORE = 2
DEFAULT_CONTEXT_AFTER = 1


@dataclass(frozen=True)
class DateRange:
    """Inclusive [start, end]. Naive datetimes are taken as UTC."""

    start: datetime
    end: datetime

    def __contains__(self, moment: datetime) -> bool:
        return _aware(self.start) <= _aware(moment) <= _aware(self.end)


@dataclass
class SearchOptions:
    limit: int = DEFAULT_LIMIT
    date_range: DateRange | None = None
    sender: str | None = None
    conversation_uuids: list[str] | None = None


@dataclass
class SearchResult:
    message: Message
    conversation: ConversationSummary
    score: float
    previous_messages: list[Message] = field(default_factory=list)
    next_messages: list[Message] = field(default_factory=list)


@dataclass
class LearningSearchOptions:
    limit: int = DEFAULT_LIMIT
    date_range: DateRange | None = None
    source_type: str | None = None


@dataclass
class LearningSearchResult:
    learning: Learning
    score: float
    source: ResolvedSource | None


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def _check_limit(limit: int) -> None:
    if limit < 0:
        raise ValidationError(f"limit must be >= 0, got {limit}")


# ------------------------------------------------------------------
# Message search
# ------------------------------------------------------------------


class SearchEngine:
    """Context-enriching semantic search over message chunks.

    The VectorStore is initialized with ``embedder.dimensions``; passing a
    store already initialized with other dimensions raises
    ConfigurationError.
    """

    def __init__(
        self,
        repo: Repository,
        embedder: Embedder,
        store: VectorStore | None = None,
        context_before: int = DEFAULT_CONTEXT_BEFORE,
        context_after: int = DEFAULT_CONTEXT_AFTER,
    ) -> None:
        self.repo = repo
        self.embedder = embedder
        self.store = store if store is not None else VectorStore()
        self.store.initialize(embedder.dimensions)
        self.context_before = context_before
        self.context_after = context_after

    @classmethod
    def from_repository(cls, repo: Repository, embedder: Embedder, **kwargs) -> SearchEngine:
        """Build an engine whose store is hydrated from the stored chunk embeddings."""
        engine = cls(repo, embedder, **kwargs)
        loaded = repo.load_chunk_vectors(engine.store)
        logger.debug("Loaded %d chunk vectors", loaded)
        return engine

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Return messages similar to *query*, best first."""
        options = options or SearchOptions()
        _check_limit(options.limit)
        if options.limit == 0:
            return []
        return self._resolve(self.embedder.embed(query), options)

    async def asearch(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        options = options or SearchOptions()
        _check_limit(options.limit)
        if options.limit == 0:
            return []
        return self._resolve(await self.embedder.aembed(query), options)

    def _resolve(self, vector: np.ndarray, options: SearchOptions) -> list[SearchResult]:
        hits = self.store.search(vector, options.limit)
        allowed = set(options.conversation_uuids) if options.conversation_uuids is not None else None

        results: list[SearchResult] = []
        seen: set[str] = set()
        for hit in hits:
            message_uuid, _ = split_chunk_key(hit.id)
            if message_uuid in seen:
                continue
            seen.add(message_uuid)

            message = self.repo.get_message(message_uuid)
            if message is None:
                continue
            if options.date_range is not None and message.created_at not in options.date_range:
                continue
            if options.sender is not None and message.sender != options.sender:
                continue
            if allowed is not None and message.conversation_uuid not in allowed:
                continue

            conversation = self.repo.get_conversation_summary(message.conversation_uuid)
            if conversation is None:
                continue
            previous, following = self.repo.get_context_messages(
                message, self.context_before, self.context_after
            )
            results.append(
                SearchResult(
                    message=message,
                    conversation=conversation,
                    score=hit.score,
                    previous_messages=previous,
                    next_messages=following,
                )
            )
        return results


# ------------------------------------------------------------------
# Learning search
# ------------------------------------------------------------------


class LearningSearch:
    """Semantic search over learnings, keyed by learning_id in the store."""

    def __init__(
        self,
        repo: Repository,
        embedder: Embedder,
        store: VectorStore | None = None,
    ) -> None:
        self.repo = repo
        self.embedder = embedder
        self.store = store if store is not None else VectorStore()
        self.store.initialize(embedder.dimensions)

    @classmethod
    def from_repository(cls, repo: Repository, embedder: Embedder) -> LearningSearch:
        search = cls(repo, embedder)
        loaded = repo.load_learning_vectors(search.store)
        logger.debug("Loaded %d learning vectors", loaded)
        return search

    def search(
        self, query: str, options: LearningSearchOptions | None = None
    ) -> list[LearningSearchResult]:
        options = options or LearningSearchOptions()
        _check_limit(options.limit)
        if options.limit == 0:
            return []
        return self._resolve(self.embedder.embed(query), options)

    async def asearch(
        self, query: str, options: LearningSearchOptions | None = None
    ) -> list[LearningSearchResult]:
        options = options or LearningSearchOptions()
        _check_limit(options.limit)
        if options.limit == 0:
            return []
        return self._resolve(await self.embedder.aembed(query), options)

    def _resolve(
        self, vector: np.ndarray, options: LearningSearchOptions
    ) -> list[LearningSearchResult]:
        hits: list[VectorSearchResult] = self.store.search(vector, options.limit * 2)
        learnings = self.repo.get_learnings(h.id for h in hits)

        results: list[LearningSearchResult] = []
        for hit in hits:
            learning = learnings.get(hit.id)
            if learning is None:
                continue
            if options.date_range is not None and learning.created_at not in options.date_range:
                continue
            if options.source_type is not None and learning.source_type != options.source_type:
                continue
            results.append(
                LearningSearchResult(
                    learning=learning,
                    score=hit.score,
                    source=self.repo.resolve_source(learning.source),
                )
            )
        results.sort(key=lambda r: r.score, reverse=True)
        return results[: options.limit]
