"""Domain models for the llm-archive database layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union

import numpy as np


class Sender(str, Enum):
    HUMAN = "human"
    ASSISTANT = "assistant"


class BlockType(str, Enum):
    """Flashcard block kinds: definitional, justificatory, contrastive."""

    QA = "qa"
    WHY = "why"
    CONTRAST = "contrast"


class ReviewRating(str, Enum):
    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


@dataclass
class Message:
    uuid: str
    conversation_uuid: str
    conversation_index: int
    sender: str
    text: str
    created_at: datetime


@dataclass
class MessageChunk:
    message_uuid: str
    chunk_index: int
    text: str
    char_count: int
    embedding: np.ndarray | None = None

    @property
    def key(self) -> str:
        """VectorStore id for this chunk."""
        return chunk_key(self.message_uuid, self.chunk_index)


@dataclass
class Conversation:
    uuid: str
    title: str
    created_at: datetime
    updated_at: datetime
    platform: str = "claude"
    summary: str | None = None
    messages: list[Message] = field(default_factory=list)
    message_count: int = 0


@dataclass
class Topic:
    topic_id: str
    title: str
    summary: str
    key_points: list[str]
    pdf_id: str
    created_at: datetime
    source_passages: list[str] = field(default_factory=list)
    source_text: str | None = None
    parent_topic_id: str | None = None
    depth: int = 0


# ------------------------------------------------------------------
# Learning sources: tagged union, resolved through the repository
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ConversationSource:
    id: str
    source_type: str = field(default="conversation", init=False)

    @property
    def source_id(self) -> str:
        return self.id


@dataclass(frozen=True)
class TopicSource:
    id: str
    source_type: str = field(default="topic", init=False)

    @property
    def source_id(self) -> str:
        return self.id


SourceRef = Union[ConversationSource, TopicSource]

SOURCE_TYPES: tuple[str, ...] = ("conversation", "topic")


def source_ref(source_type: str, source_id: str) -> SourceRef:
    """Build the SourceRef variant for a raw (source_type, source_id) pair."""
    if source_type == "conversation":
        return ConversationSource(source_id)
    if source_type == "topic":
        return TopicSource(source_id)
    raise ValueError(f"Unknown source_type '{source_type}' (expected one of {SOURCE_TYPES})")


@dataclass
class ResolvedSource:
    """Display metadata for a learning's source that still exists."""

    ref: SourceRef
    title: str
    created_at: datetime


@dataclass
class ContentBlock:
    block_type: BlockType
    question: str
    answer: str


@dataclass
class Learning:
    learning_id: str
    title: str
    problem_space: str
    insight: str
    blocks: list[ContentBlock]
    source: SourceRef
    created_at: datetime
    embedding: np.ndarray | None = None

    @property
    def source_type(self) -> str:
        return self.source.source_type

    @property
    def source_id(self) -> str:
        return self.source.source_id

    def embedding_text(self) -> str:
        """Text that is embedded for learning-level search."""
        blocks_text = " ".join(f"Q: {b.question} A: {b.answer}" for b in self.blocks)
        return f"{self.title} {self.problem_space} {self.insight} {blocks_text}".strip()


@dataclass
class LearningReview:
    learning_id: str
    rating: ReviewRating
    reviewed_at: datetime
    block_index: int | None = None
    id: int | None = None


def chunk_key(message_uuid: str, chunk_index: int) -> str:
    return f"{message_uuid}:{chunk_index}"


def split_chunk_key(key: str) -> tuple[str, int]:
    """Inverse of chunk_key(); message UUIDs never contain ':'."""
    message_uuid, _, index = key.rpartition(":")
    return message_uuid, int(index)


@dataclass
class ConversationSummary:
    """Conversation metadata attached to search hits (no messages)."""

    uuid: str
    title: str
    created_at: datetime
    platform: str = "claude"
    summary: str | None = None


@dataclass
class LearningPage:
    learnings: list[Learning]
    total: int
    has_more: bool
