"""Per-source-type learning extractors.

An extractor loads one source (conversation or topic), renders it into a
text context, asks the language model for a JSON array of learnings,
embeds them in one batch and persists them in a single transaction.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from llm_archive.db.models import (
    BlockType,
    ContentBlock,
    Conversation,
    ConversationSource,
    Learning,
    SourceRef,
    Topic,
    TopicSource,
)
from llm_archive.db.repository import Repository
from llm_archive.db.vectors import VectorStore
from llm_archive.errors import LearningParseError, SourceNotFoundError
from llm_archive.extract.prompts import CONVERSATION_EXTRACTION_PROMPT, TOPIC_EXTRACTION_PROMPT
from llm_archive.rag.llm_client import Embedder, LanguageModel

logger = logging.getLogger(__name__)

S = TypeVar("S")

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ------------------------------------------------------------------
# LLM output parsing
# ------------------------------------------------------------------


def parse_learnings(raw: str) -> list[dict[str, Any]]:
    """Parse the model's JSON array into normalized learning fields.

    Markdown code fences around the array are tolerated.

    Returns:
        One dict per learning with keys ``title``, ``problem_space``,
        ``insight`` and ``blocks`` (list of ContentBlock).

    Raises:
        LearningParseError: If the output is not a JSON array of
            well-formed learnings.
    """
    text = raw.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LearningParseError(f"Model output is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise LearningParseError(f"Expected a JSON array, got {type(data).__name__}")
    return [_parse_item(item, i) for i, item in enumerate(data)]


def _parse_item(item: Any, index: int) -> dict[str, Any]:
    if not isinstance(item, dict):
        raise LearningParseError(f"Learning {index} is not an object")
    fields = {}
    for key, name in (("title", "title"), ("problemSpace", "problem_space"), ("insight", "insight")):
        value = item.get(key)
        if not isinstance(value, str) or not value.strip():
            raise LearningParseError(f"Learning {index} is missing '{key}'")
        fields[name] = value.strip()

    raw_blocks = item.get("blocks", [])
    if not isinstance(raw_blocks, list):
        raise LearningParseError(f"Learning {index}: 'blocks' must be an array")
    blocks = []
    for j, block in enumerate(raw_blocks):
        try:
            blocks.append(
                ContentBlock(
                    block_type=BlockType(block["blockType"]),
                    question=str(block["question"]),
                    answer=str(block["answer"]),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise LearningParseError(f"Learning {index}, block {j} is malformed: {exc}") from exc
    fields["blocks"] = blocks
    return fields


# ------------------------------------------------------------------
# Extractors
# ------------------------------------------------------------------


class LearningExtractor(ABC, Generic[S]):
    """Base class: load a source, build its context, distil learnings.

    Args:
        repo: Repository used to load sources and persist learnings.
        llm: Language model that returns the JSON array.
        embedder: Embeds each learning's text for learning-level search.
        prompt: Template prepended to the context (default per subclass).
        vector_store: Learning VectorStore to update after each insert.
        clock: Returns the creation timestamp for new learnings.
    """

    source_type: str = ""
    default_prompt: str = ""

    def __init__(
        self,
        repo: Repository,
        llm: LanguageModel,
        embedder: Embedder,
        prompt: str | None = None,
        vector_store: VectorStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repo = repo
        self.llm = llm
        self.embedder = embedder
        self.prompt = prompt or self.default_prompt
        self.vector_store = vector_store
        self.clock = clock

    @abstractmethod
    def load(self, source_id: str) -> S:
        """Return the source, or raise SourceNotFoundError."""

    @abstractmethod
    def build_context(self, source: S) -> str: ...

    @abstractmethod
    def source_ref(self, source: S) -> SourceRef: ...

    async def extract_by_id(self, source_id: str) -> list[Learning]:
        return await self.extract(self.load(source_id))

    async def extract(self, source: S, persist: bool = True) -> list[Learning]:
        """Run one extraction. Nothing is stored when the model returns [].

        With ``persist=False`` the learnings are returned unembedded and
        nothing is written (preview mode).
        """
        ref = self.source_ref(source)
        response = await self.llm.agenerate(self.prompt, self.build_context(source))
        drafts = parse_learnings(response)
        if not drafts:
            logger.debug("No learnings for %s %s", ref.source_type, ref.source_id)
            return []

        now = self.clock()
        learnings = [
            Learning(
                learning_id=str(uuid.uuid4()),
                source=ref,
                created_at=now,
                **draft,
            )
            for draft in drafts
        ]
        if not persist:
            return learnings

        embeddings = await self.embedder.aembed_batch([lrn.embedding_text() for lrn in learnings])
        for learning, embedding in zip(learnings, embeddings):
            learning.embedding = embedding

        self.repo.add_learnings(learnings)
        if self.vector_store is not None:
            self.vector_store.insert_many((lrn.learning_id, lrn.embedding) for lrn in learnings)
        logger.info(
            "Stored %d learnings for %s %s", len(learnings), ref.source_type, ref.source_id
        )
        return learnings


class ConversationLearningExtractor(LearningExtractor[Conversation]):
    source_type = "conversation"
    default_prompt = CONVERSATION_EXTRACTION_PROMPT

    def load(self, source_id: str) -> Conversation:
        conversation = self.repo.get_conversation(source_id)
        if conversation is None:
            raise SourceNotFoundError("conversation", source_id)
        return conversation

    def build_context(self, source: Conversation) -> str:
        messages = "\n\n".join(f"[{m.sender.upper()}]: {m.text}" for m in source.messages)
        return (
            f'Conversation: "{source.title}"\n'
            f"Date: {source.created_at.isoformat()}\n\n"
            f"{messages}"
        )

    def source_ref(self, source: Conversation) -> SourceRef:
        return ConversationSource(source.uuid)


class TopicLearningExtractor(LearningExtractor[Topic]):
    source_type = "topic"
    default_prompt = TOPIC_EXTRACTION_PROMPT

    def load(self, source_id: str) -> Topic:
        topic = self.repo.get_topic(source_id)
        if topic is None:
            raise SourceNotFoundError("topic", source_id)
        return topic

    def build_context(self, source: Topic) -> str:
        key_points = "\n".join(f"  {i}. {p}" for i, p in enumerate(source.key_points, start=1))
        context = (
            f"TOPIC: {source.title}\n\n"
            f"SUMMARY:\n{source.summary}\n\n"
            f"KEY POINTS:\n{key_points}"
        )
        if source.source_passages:
            passages = "\n".join(
                f'  [{i}] "{p}"' for i, p in enumerate(source.source_passages, start=1)
            )
            context += f"\n\nSOURCE PASSAGES:\n{passages}"
        return context

    def source_ref(self, source: Topic) -> SourceRef:
        return TopicSource(source.topic_id)


# ------------------------------------------------------------------
# Re-embedding
# ------------------------------------------------------------------

_REEMBED_BATCH = 64


def reembed_learnings(
    repo: Repository, embedder: Embedder, store: VectorStore | None = None
) -> int:
    """Embed stored learnings that have no vector, without calling the language model.

    Uses the same text as extraction (``Learning.embedding_text()``).
    Each batch is committed before the next is embedded. Returns the
    number of learnings embedded.
    """
    missing = repo.learnings_missing_embedding()
    embedded = 0
    for start in range(0, len(missing), _REEMBED_BATCH):
        batch = missing[start : start + _REEMBED_BATCH]
        vectors = embedder.embed_batch([lrn.embedding_text() for lrn in batch])
        for learning, vector in zip(batch, vectors):
            learning.embedding = vector
        embedded += repo.set_learning_embeddings(batch)
        if store is not None:
            store.insert_many((lrn.learning_id, lrn.embedding) for lrn in batch)
    if embedded:
        logger.info("Re-embedded %d learnings", embedded)
    return embedded
