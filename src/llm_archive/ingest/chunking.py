"""Deterministic fixed-window chunker for message text.

Unlike a prose chunker, windows are neither stripped nor overlapped:
joining the chunk texts in order reconstructs the input exactly.
"""

from __future__ import annotations

from dataclasses import dataclass

from llm_archive.errors import ValidationError

DEFAULT_MAX_CHARS = 3000


@dataclass(frozen=True)
class TextChunk:
    text: str
    char_count: int
    index: int


def estimate_chunk_count(length: int, max_chars: int = DEFAULT_MAX_CHARS) -> int:
    """Number of chunks chunk_text() produces for a text of *length* characters."""
    _check_max_chars(max_chars)
    if length <= max_chars:
        return 1
    return -(-length // max_chars)


def chunk_text(text: str, max_chars: int = DEFAULT_MAX_CHARS) -> list[TextChunk]:
    """Split *text* into consecutive windows of at most *max_chars* characters.

    Text no longer than *max_chars* is returned as a single chunk. Longer
    text yields ``ceil(len(text) / max_chars)`` chunks, every one full
    except possibly the last.

    An empty string yields exactly one empty chunk, so every message owns
    at least one chunk.

    Raises:
        ValidationError: If *max_chars* < 1.
    """
    _check_max_chars(max_chars)
    if len(text) <= max_chars:
        return [TextChunk(text=text, char_count=len(text), index=0)]
    return [
        TextChunk(text=piece, char_count=len(piece), index=i)
        for i, piece in enumerate(
            text[pos : pos + max_chars] for pos in range(0, len(text), max_chars)
        )
    ]


class Chunker:
    """chunk_text() bound to a configured threshold."""

    def __init__(self, max_chars: int = DEFAULT_MAX_CHARS) -> None:
        _check_max_chars(max_chars)
        self.max_chars = max_chars

    def chunk(self, text: str) -> list[TextChunk]:
        return chunk_text(text, self.max_chars)

    def estimate(self, length: int) -> int:
        return estimate_chunk_count(length, self.max_chars)


def _check_max_chars(max_chars: int) -> None:
    if max_chars < 1:
        raise ValidationError(f"max_chars must be >= 1, got {max_chars}")
