"""Tests for message search and learning search."""

from __future__ import annotations

from datetime import timedelta

import pytest

from fakes import T0, FakeEmbedder, make_conversation, make_learning, make_topic
from llm_archive.db.models import ConversationSource, TopicSource
from llm_archive.db.vectors import VectorStore
from llm_archive.errors import ConfigurationError, ValidationError
from llm_archive.ingest.chunking import Chunker
from llm_archive.ingest.ingestor import ConversationIngestor
from llm_archive.rag.search import (
    DateRange,
    LearningSearch,
    LearningSearchOptions,
    SearchEngine,
    SearchOptions,
)

VECTORS = {"rust": [1.0, 0.0, 0.0], "python": [0.0, 1.0, 0.0], "sql": [0.0, 0.0, 1.0]}


@pytest.fixture
def embedder():
    return FakeEmbedder(VECTORS)


@pytest.fixture
def archive(repo, embedder):
    """conv-1 holds five messages; only index 2 is about rust."""
    ingestor = ConversationIngestor(repo, embedder)
    ingestor.ingest(
        [
            make_conversation(
                "conv-1",
                [
                    ("human", "intro"),
                    ("assistant", "more intro"),
                    ("human", "rust ownership"),
                    ("assistant", "python typing"),
                    ("human", "sql joins"),
                ],
                title="Languages",
            ),
            make_conversation("conv-2", [("human", "rust macros")], created_at=T0 + timedelta(days=1)),
        ]
    )
    return repo


def _ids(results):
    return [r.message.uuid for r in results]


# ------------------------------------------------------------------
# SearchEngine
# ------------------------------------------------------------------


def test_search_returns_match_with_context(archive, embedder):
    engine = SearchEngine.from_repository(archive, embedder)
    results = engine.search("rust", SearchOptions(limit=1))

    assert len(results) == 1
    hit = results[0]
    assert hit.message.uuid == "conv-1-m2"
    assert hit.score == pytest.approx(1.0, abs=1e-6)
    assert hit.conversation.title == "Languages"
    assert [m.conversation_index for m in hit.previous_messages] == [0, 1]
    assert [m.conversation_index for m in hit.next_messages] == [3]


def test_search_context_window_configurable(archive, embedder):
    engine = SearchEngine.from_repository(archive, embedder, context_before=1, context_after=0)
    hit = engine.search("rust", SearchOptions(limit=1))[0]
    assert [m.conversation_index for m in hit.previous_messages] == [1]
    assert hit.next_messages == []


def test_search_results_score_descending(archive, embedder):
    results = SearchEngine.from_repository(archive, embedder).search("rust")
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)
    assert len(results) == 6


def test_sender_filter(archive, embedder):
    engine = SearchEngine.from_repository(archive, embedder)
    results = engine.search("rust", SearchOptions(limit=4, sender="assistant"))
    assert _ids(results) == ["conv-1-m1"]


def test_filter_runs_after_limit(archive, embedder):
    # the single candidate is a human message, so nothing survives
    engine = SearchEngine.from_repository(archive, embedder)
    assert engine.search("rust", SearchOptions(limit=1, sender="assistant")) == []


def test_date_range_filter(archive, embedder):
    engine = SearchEngine.from_repository(archive, embedder)
    window = DateRange(T0 + timedelta(minutes=3), T0 + timedelta(minutes=10))
    results = engine.search("rust", SearchOptions(limit=10, date_range=window))
    assert _ids(results) == ["conv-1-m3", "conv-1-m4"]


def test_conversation_allow_list(archive, embedder):
    engine = SearchEngine.from_repository(archive, embedder)
    results = engine.search("rust", SearchOptions(limit=10, conversation_uuids=["conv-2"]))
    assert _ids(results) == ["conv-2-m0"]


def test_chunks_of_one_message_collapse(repo, embedder):
    ConversationIngestor(repo, embedder, Chunker(max_chars=5)).ingest(
        [make_conversation(texts=[("human", "rust rust"), ("assistant", "sql")])]
    )
    assert repo.count_chunks() == 3

    results = SearchEngine.from_repository(repo, embedder).search("rust", SearchOptions(limit=5))
    assert _ids(results) == ["conv-1-m0", "conv-1-m1"]


def test_missing_message_is_skipped(archive, embedder):
    engine = SearchEngine.from_repository(archive, embedder)
    engine.store.insert("ghost:0", [1.0, 0.0, 0.0])
    assert "conv-1-m2" in _ids(engine.search("rust", SearchOptions(limit=3)))
    assert "ghost" not in _ids(engine.search("rust", SearchOptions(limit=3)))


def test_limit_zero_returns_empty_without_embedding(archive, embedder):
    engine = SearchEngine.from_repository(archive, embedder)
    embedder.calls.clear()
    assert engine.search("rust", SearchOptions(limit=0)) == []
    assert embedder.calls == []


def test_negative_limit_raises(archive, embedder):
    with pytest.raises(ValidationError):
        SearchEngine.from_repository(archive, embedder).search("rust", SearchOptions(limit=-1))


def test_empty_archive_returns_empty(repo, embedder):
    assert SearchEngine(repo, embedder).search("rust") == []


def test_store_with_other_dimensions_rejected(repo, embedder):
    store = VectorStore()
    store.initialize(5)
    with pytest.raises(ConfigurationError):
        SearchEngine(repo, embedder, store=store)


@pytest.mark.asyncio
async def test_asearch_matches_search(archive, embedder):
    engine = SearchEngine.from_repository(archive, embedder)
    assert _ids(await engine.asearch("sql")) == _ids(engine.search("sql"))


# ------------------------------------------------------------------
# LearningSearch
# ------------------------------------------------------------------


@pytest.fixture
def learnings(repo):
    repo.add_conversation(make_conversation(title="Ownership chat"))
    repo.add_topic(make_topic())
    repo.add_learnings(
        [
            make_learning("a", "Rust ownership", embedding=[1.0, 0.0, 0.0]),
            make_learning(
                "b", "Python GIL", source=TopicSource("topic-1"), embedding=[0.0, 1.0, 0.0],
                created_at=T0 + timedelta(days=2),
            ),
            make_learning(
                "c", "Borrowing", source=ConversationSource("deleted"), embedding=[0.9, 0.1, 0.0]
            ),
        ]
    )
    return repo


def test_learning_search_resolves_sources(learnings, embedder):
    results = LearningSearch.from_repository(learnings, embedder).search(
        "rust", LearningSearchOptions(limit=2)
    )
    assert [r.learning.learning_id for r in results] == ["a", "c"]
    assert results[0].source.title == "Ownership chat"
    assert results[1].source is None


def test_learning_search_source_type_filter_uses_overfetch(learnings, embedder):
    search = LearningSearch.from_repository(learnings, embedder)
    # limit 1 fetches two candidates (a, c), both conversations
    assert search.search("rust", LearningSearchOptions(limit=1, source_type="topic")) == []
    results = search.search("rust", LearningSearchOptions(limit=2, source_type="topic"))
    assert [r.learning.learning_id for r in results] == ["b"]
    assert results[0].source.title == "Backpressure"


def test_learning_search_date_range(learnings, embedder):
    window = DateRange(T0 + timedelta(days=1), T0 + timedelta(days=3))
    results = LearningSearch.from_repository(learnings, embedder).search(
        "python", LearningSearchOptions(limit=5, date_range=window)
    )
    assert [r.learning.learning_id for r in results] == ["b"]


def test_learning_search_limit_zero(learnings, embedder):
    search = LearningSearch.from_repository(learnings, embedder)
    embedder.calls.clear()
    assert search.search("rust", LearningSearchOptions(limit=0)) == []
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_learning_asearch(learnings, embedder):
    results = await LearningSearch.from_repository(learnings, embedder).asearch(
        "python", LearningSearchOptions(limit=1)
    )
    assert [r.learning.learning_id for r in results] == ["b"]


def test_date_range_naive_bounds_are_utc():
    window = DateRange(T0.replace(tzinfo=None), (T0 + timedelta(hours=1)).replace(tzinfo=None))
    assert T0 in window
    assert T0 + timedelta(hours=2) not in window
