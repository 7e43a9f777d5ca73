"""Tests for learning parsing and the per-source extractors."""

from __future__ import annotations

import json

import pytest

from fakes import (
    T0,
    FakeEmbedder,
    FakeLanguageModel,
    learnings_json,
    make_conversation,
    make_learning,
    make_topic,
)
from llm_archive.db.models import BlockType, ConversationSource, TopicSource
from llm_archive.db.vectors import VectorStore
from llm_archive.errors import LearningParseError, SourceNotFoundError
from llm_archive.extract.extractors import (
    ConversationLearningExtractor,
    TopicLearningExtractor,
    parse_learnings,
    reembed_learnings,
)
from llm_archive.extract.prompts import CONVERSATION_EXTRACTION_PROMPT, TOPIC_EXTRACTION_PROMPT


def _extractor(repo, llm, cls=ConversationLearningExtractor, **kwargs):
    return cls(repo, llm, FakeEmbedder(), clock=lambda: T0, **kwargs)


# ------------------------------------------------------------------
# parse_learnings
# ------------------------------------------------------------------


def test_parse_learnings():
    [item] = parse_learnings(learnings_json("Ownership"))
    assert item["title"] == "Ownership"
    assert item["problem_space"] == "When Ownership matters"
    assert [b.block_type for b in item["blocks"]] == [BlockType.QA, BlockType.WHY]


def test_parse_learnings_strips_code_fence():
    raw = "```json\n" + learnings_json("Fenced") + "\n```"
    assert parse_learnings(raw)[0]["title"] == "Fenced"


def test_parse_empty_array():
    assert parse_learnings("[]") == []


def test_parse_missing_blocks_defaults_to_empty():
    raw = json.dumps([{"title": "T", "problemSpace": "P", "insight": "I"}])
    assert parse_learnings(raw)[0]["blocks"] == []


@pytest.mark.parametrize(
    "raw",
    [
        "Here are your learnings!",
        json.dumps({"title": "not an array"}),
        json.dumps(["just a string"]),
        json.dumps([{"title": "T", "problemSpace": "", "insight": "I"}]),
        json.dumps([{"title": "T", "problemSpace": "P", "insight": "I", "blocks": "nope"}]),
        json.dumps(
            [{"title": "T", "problemSpace": "P", "insight": "I",
              "blocks": [{"blockType": "essay", "question": "q", "answer": "a"}]}]
        ),
    ],
)
def test_parse_malformed_output(raw):
    with pytest.raises(LearningParseError):
        parse_learnings(raw)


# ------------------------------------------------------------------
# Contexts
# ------------------------------------------------------------------


def test_conversation_context(repo):
    extractor = _extractor(repo, FakeLanguageModel())
    context = extractor.build_context(
        make_conversation(texts=[("human", "Why?"), ("assistant", "Because.")], title="Chat")
    )
    assert context == (
        'Conversation: "Chat"\n'
        "Date: 2024-03-01T12:00:00+00:00\n\n"
        "[HUMAN]: Why?\n\n[ASSISTANT]: Because."
    )


def test_topic_context(repo):
    extractor = _extractor(repo, FakeLanguageModel(), TopicLearningExtractor)
    context = extractor.build_context(make_topic())
    assert context.startswith("TOPIC: Backpressure\n\nSUMMARY:\n")
    assert "KEY POINTS:\n  1. Bounded queues\n  2. Credit-based flow control" in context
    assert 'SOURCE PASSAGES:\n  [1] "A full queue blocks the producer."' in context


def test_topic_context_without_passages(repo):
    topic = make_topic()
    topic.source_passages = []
    context = _extractor(repo, FakeLanguageModel(), TopicLearningExtractor).build_context(topic)
    assert "SOURCE PASSAGES" not in context


# ------------------------------------------------------------------
# extract()
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_extract_persists_and_indexes(repo):
    repo.add_conversation(make_conversation())
    store = VectorStore()
    store.initialize(3)
    llm = FakeLanguageModel([learnings_json("First", "Second")])
    extractor = _extractor(repo, llm, vector_store=store)

    learnings = await extractor.extract_by_id("conv-1")

    assert [lrn.title for lrn in learnings] == ["First", "Second"]
    assert all(lrn.source == ConversationSource("conv-1") for lrn in learnings)
    assert all(lrn.created_at == T0 for lrn in learnings)
    assert repo.count_learnings("conversation") == 2
    assert all(lrn.learning_id in store for lrn in learnings)
    prompt, context, _ = llm.calls[0]
    assert prompt == CONVERSATION_EXTRACTION_PROMPT
    assert context.startswith('Conversation: "Test conversation"')


@pytest.mark.asyncio
async def test_extract_embeds_learning_text_in_one_batch(repo):
    repo.add_conversation(make_conversation())
    embedder = FakeEmbedder()
    extractor = ConversationLearningExtractor(
        repo, FakeLanguageModel([learnings_json("A", "B")]), embedder
    )
    await extractor.extract_by_id("conv-1")
    assert len(embedder.calls) == 1
    assert embedder.calls[0][0].startswith("A When A matters A is the key idea.")


@pytest.mark.asyncio
async def test_extract_empty_result_stores_nothing(repo):
    repo.add_conversation(make_conversation())
    assert await _extractor(repo, FakeLanguageModel(["[]"])).extract_by_id("conv-1") == []
    assert repo.count_learnings() == 0


@pytest.mark.asyncio
async def test_extract_preview_writes_nothing(repo):
    conversation = make_conversation()
    repo.add_conversation(conversation)
    extractor = _extractor(repo, FakeLanguageModel([learnings_json("Only a preview")]))

    learnings = await extractor.extract(conversation, persist=False)

    assert [lrn.title for lrn in learnings] == ["Only a preview"]
    assert learnings[0].embedding is None
    assert repo.count_learnings() == 0


@pytest.mark.asyncio
async def test_extract_malformed_output_raises(repo):
    repo.add_conversation(make_conversation())
    with pytest.raises(LearningParseError):
        await _extractor(repo, FakeLanguageModel(["not json"])).extract_by_id("conv-1")
    assert repo.count_learnings() == 0


@pytest.mark.asyncio
async def test_extract_unknown_source_raises(repo):
    llm = FakeLanguageModel()
    with pytest.raises(SourceNotFoundError, match="Conversation not found: nope"):
        await _extractor(repo, llm).extract_by_id("nope")
    assert llm.calls == []


@pytest.mark.asyncio
async def test_topic_extraction(repo):
    repo.add_topic(make_topic())
    llm = FakeLanguageModel([learnings_json("Credit flow")])
    learnings = await _extractor(repo, llm, TopicLearningExtractor).extract_by_id("topic-1")

    assert learnings[0].source == TopicSource("topic-1")
    assert repo.has_learnings("topic", "topic-1")
    assert llm.calls[0][0] == TOPIC_EXTRACTION_PROMPT


@pytest.mark.asyncio
async def test_custom_prompt(repo):
    repo.add_conversation(make_conversation())
    llm = FakeLanguageModel(["[]"])
    await _extractor(repo, llm, prompt="My template").extract_by_id("conv-1")
    assert llm.calls[0][0] == "My template"


# ------------------------------------------------------------------
# reembed_learnings
# ------------------------------------------------------------------


def test_reembed_learnings_fills_only_missing_vectors(repo):
    repo.add_learnings(
        [
            make_learning("lrn-1", title="Rust ownership", embedding=[0.0, 1.0, 0.0]),
            make_learning("lrn-2", title="Bounded queues"),
        ]
    )
    embedder = FakeEmbedder({"Bounded queues": [1.0, 0.0, 0.0]})
    store = VectorStore()
    store.initialize(3)

    assert reembed_learnings(repo, embedder, store) == 1

    assert embedder.calls == [[make_learning("lrn-2").embedding_text()]]
    assert repo.learnings_missing_embedding() == []
    assert store.search([1.0, 0.0, 0.0], limit=1)[0].id == "lrn-2"


def test_reembed_learnings_with_nothing_missing(repo):
    embedder = FakeEmbedder()
    assert reembed_learnings(repo, embedder) == 0
    assert embedder.calls == []
