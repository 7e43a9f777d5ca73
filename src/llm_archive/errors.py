"""Exception hierarchy for the retrieval & distillation pipeline.

Configuration and validation errors are fatal and propagate to the
immediate caller. External-service errors are transient: the extraction
orchestrator retries them and then demotes them to a per-item failure.
"Nothing found" is never an exception: search and explain return empty
results instead.
"""

from __future__ import annotations


class ArchiveError(Exception):
    """Base class for all llm-archive errors."""


class ConfigurationError(ArchiveError):
    """Fatal setup error: dimension mismatch, uninitialized store, bad config."""


class ValidationError(ArchiveError, ValueError):
    """Malformed input to a single operation (e.g. wrong vector length)."""


class ExternalServiceError(ArchiveError):
    """A call to the embedding or language model failed (retryable)."""


class LearningParseError(ExternalServiceError):
    """The language model returned output that is not a valid learnings array."""


class SourceNotFoundError(ArchiveError, LookupError):
    """A conversation or topic required by an operation does not exist."""

    def __init__(self, source_type: str, source_id: str) -> None:
        super().__init__(f"{source_type.capitalize()} not found: {source_id}")
        self.source_type = source_type
        self.source_id = source_id


class ExtractionError(ArchiveError):
    """Extraction for one source failed after all retry attempts."""

    def __init__(self, source_id: str, attempts: int, cause: BaseException) -> None:
        super().__init__(f"Failed after {attempts} attempts: {cause}")
        self.source_id = source_id
        self.attempts = attempts
        self.cause = cause
