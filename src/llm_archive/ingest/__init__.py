"""llm-archive ingest pipeline: export importer, chunker, conversation ingestor."""

from llm_archive.ingest.chunking import Chunker, TextChunk, chunk_text, estimate_chunk_count
from llm_archive.ingest.importer import ClaudeImporter
from llm_archive.ingest.ingestor import ConversationIngestor, IngestStats

__all__ = [
    "Chunker",
    "ClaudeImporter",
    "ConversationIngestor",
    "IngestStats",
    "TextChunk",
    "chunk_text",
    "estimate_chunk_count",
]
