"""llm-archive database layer."""

from llm_archive.db.connection import Database
from llm_archive.db.migrations import MIGRATIONS, run_migrations
from llm_archive.db.repository import Repository
from llm_archive.db.schema import initialize
from llm_archive.db.vectors import VectorSearchResult, VectorStore

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "Repository",
    "VectorSearchResult",
    "VectorStore",
]
