"""Concurrent batch extraction of learnings.

Each source id is processed independently under an asyncio.Semaphore:
skip or clear existing learnings, extract with retries, report progress.
One id's failure never aborts the batch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from llm_archive.db.models import Learning
from llm_archive.db.repository import Repository
from llm_archive.errors import ExtractionError, ValidationError
from llm_archive.extract.extractors import LearningExtractor
from llm_archive.extract.retry import RetryError, RetryPolicy

logger = logging.getLogger(__name__)

SKIPPED_TITLE = "(skipped)"
EMPTY_TITLE = "(no learnings)"

ProgressCallback = Callable[[int, int, str], None]
ErrorCallback = Callable[[str, ExtractionError], None]


class OutcomeStatus(str, Enum):
    EXTRACTED = "extracted"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ExtractionOptions:
    """Batch knobs.

    ``on_progress(completed, total, title)`` fires once per extracted or
    skipped id (title is the first learning's title, "(no learnings)" or
    "(skipped)"). ``on_error(id, error)`` fires instead for an id that
    failed for good; ``completed`` counts those too.
    """

    concurrency: int = 10
    overwrite: bool = False
    on_progress: ProgressCallback | None = None
    on_error: ErrorCallback | None = None


@dataclass
class ExtractionOutcome:
    source_id: str
    status: OutcomeStatus
    attempts: int = 0
    learning_count: int = 0
    error: ExtractionError | None = None


@dataclass
class ExtractionReport:
    learnings: list[Learning] = field(default_factory=list)
    outcomes: list[ExtractionOutcome] = field(default_factory=list)

    def _with(self, status: OutcomeStatus) -> list[ExtractionOutcome]:
        return [o for o in self.outcomes if o.status is status]

    @property
    def succeeded(self) -> list[ExtractionOutcome]:
        return self._with(OutcomeStatus.EXTRACTED)

    @property
    def skipped(self) -> list[ExtractionOutcome]:
        return self._with(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> list[ExtractionOutcome]:
        return self._with(OutcomeStatus.FAILED)


class ExtractionOrchestrator:
    """Fan extraction of many source ids out over a bounded pool of tasks.

    All tasks run on one event loop, so repository writes never interleave
    mid-statement. The skip-if-exists check is not atomic with the insert;
    ids within one batch are expected to be distinct.

    Example:
        >>> orchestrator = ExtractionOrchestrator(repo, ConversationLearningExtractor(...))
        >>> learnings = await orchestrator.extract(uuids, ExtractionOptions(concurrency=4))
    """

    def __init__(
        self,
        repo: Repository,
        extractor: LearningExtractor,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.repo = repo
        self.extractor = extractor
        self.retry_policy = retry_policy or RetryPolicy()

    async def extract(
        self, source_ids: Sequence[str], options: ExtractionOptions | None = None
    ) -> list[Learning]:
        """Extract learnings for every id and return them flattened.

        The order of the returned list is not part of the contract.
        """
        return (await self.extract_with_report(source_ids, options)).learnings

    async def extract_with_report(
        self, source_ids: Sequence[str], options: ExtractionOptions | None = None
    ) -> ExtractionReport:
        """Like extract(), but also return one ExtractionOutcome per id (input order)."""
        options = options or ExtractionOptions()
        if options.concurrency < 1:
            raise ValidationError(f"concurrency must be >= 1, got {options.concurrency}")

        semaphore = asyncio.Semaphore(options.concurrency)
        total = len(source_ids)
        completed = 0

        def finish(title: str | None) -> None:
            # failed ids advance the counter but are reported via on_error only
            nonlocal completed
            completed += 1
            if title is not None and options.on_progress:
                options.on_progress(completed, total, title)

        async def run_one(source_id: str) -> tuple[ExtractionOutcome, list[Learning]]:
            async with semaphore:
                return await self._process(source_id, options, finish)

        results = await asyncio.gather(*(run_one(sid) for sid in source_ids))

        report = ExtractionReport()
        for outcome, learnings in results:
            report.outcomes.append(outcome)
            report.learnings.extend(learnings)
        logger.info(
            "Extraction finished: %d extracted, %d skipped, %d failed, %d learnings",
            len(report.succeeded),
            len(report.skipped),
            len(report.failed),
            len(report.learnings),
        )
        return report

    async def _process(
        self,
        source_id: str,
        options: ExtractionOptions,
        finish: Callable[[str | None], None],
    ) -> tuple[ExtractionOutcome, list[Learning]]:
        source_type = self.extractor.source_type

        try:
            if self._skip_or_clear(source_id, options.overwrite):
                finish(SKIPPED_TITLE)
                return ExtractionOutcome(source_id, OutcomeStatus.SKIPPED), []
        except Exception as exc:
            # storage failed before any extraction attempt
            return self._failed(source_id, 0, exc, options, finish), []

        try:
            outcome = await self.retry_policy.run(
                lambda: self.extractor.extract_by_id(source_id),
                label=f"{source_type} {source_id}",
            )
        except RetryError as exc:
            return self._failed(source_id, exc.attempts, exc.last_error, options, finish), []

        learnings = outcome.value
        finish(learnings[0].title if learnings else EMPTY_TITLE)
        return ExtractionOutcome(
            source_id,
            OutcomeStatus.EXTRACTED,
            attempts=outcome.attempts,
            learning_count=len(learnings),
        ), learnings

    def _skip_or_clear(self, source_id: str, overwrite: bool) -> bool:
        """True when *source_id* already has learnings and must be skipped."""
        source_type = self.extractor.source_type
        if not self.repo.has_learnings(source_type, source_id):
            return False
        if not overwrite:
            return True
        deleted = self.repo.delete_learnings_by_source(source_type, source_id)
        if self.extractor.vector_store is not None:
            for learning_id in deleted:
                self.extractor.vector_store.delete(learning_id)
        logger.debug("Cleared %d learnings for %s %s", len(deleted), source_type, source_id)
        return False

    def _failed(
        self,
        source_id: str,
        attempts: int,
        cause: BaseException,
        options: ExtractionOptions,
        finish: Callable[[str | None], None],
    ) -> ExtractionOutcome:
        error = ExtractionError(source_id, attempts, cause)
        logger.warning(
            "Extraction failed for %s %s: %s", self.extractor.source_type, source_id, error
        )
        finish(None)
        if options.on_error:
            options.on_error(source_id, error)
        return ExtractionOutcome(source_id, OutcomeStatus.FAILED, attempts=attempts, error=error)
