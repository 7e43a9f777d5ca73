"""Explain a new concept by analogy to the user's past learnings.

search learnings → build bridge context → LLM synthesis → insights + confidence.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from llm_archive.db.models import BlockType, Learning
from llm_archive.extract.prompts import SYNTHESIS_PROMPT
from llm_archive.rag.llm_client import LanguageModel
from llm_archive.rag.search import LearningSearch, LearningSearchOptions

logger = logging.getLogger(__name__)

DEFAULT_LEARNING_LIMIT = 7
MAX_INSIGHTS = 5
NO_MATCH_SYNTHESIS = "No related learnings found. This might be entirely new territory!"


@dataclass
class ExplainOptions:
    learning_limit: int = DEFAULT_LEARNING_LIMIT
    custom_prompt: str | None = None
    temperature: float | None = None


@dataclass
class ExplanationResult:
    new_concept: str
    synthesis: str
    related_learnings: list[Learning] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)
    confidence: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    scores: list[float] = field(default_factory=list)


def build_synthesis_context(new_concept: str, learnings: Sequence[Learning]) -> str:
    """Render the concept and its related learnings for the synthesis prompt."""
    parts = [f"NEW CONCEPT TO EXPLAIN:\n{new_concept}\n\n", "RELATED LEARNINGS FROM YOUR PAST:\n\n"]
    for i, learning in enumerate(learnings, start=1):
        parts.append(f"[Learning {i}] {learning.title}\n")
        parts.append(f"Problem Space: {learning.problem_space}\n")
        parts.append(f"Insight: {learning.insight}\n")
        if learning.blocks:
            parts.append("Key Points:\n")
            for block in learning.blocks:
                parts.append(f"  [{BlockType(block.block_type).value}] Q: {block.question}\n")
                parts.append(f"           A: {block.answer}\n")
        parts.append("\n")
    return "".join(parts)


def extract_insights(learnings: Sequence[Learning], cap: int = MAX_INSIGHTS) -> list[str]:
    """First sentence of each learning's insight, deduplicated in order."""
    insights: list[str] = []
    for learning in learnings:
        first = learning.insight.split(".")[0].strip()
        if first and first not in insights:
            insights.append(first)
    return insights[:cap]


def calculate_confidence(scores: Sequence[float]) -> float:
    """``0.6 * top + 0.4 * mean(top 3)`` over score-descending *scores*; 0 when empty.

    A ranking signal, not a calibrated probability.
    """
    if not scores:
        return 0.0
    top3 = scores[:3]
    return scores[0] * 0.6 + (sum(top3) / len(top3)) * 0.4


class IsomorphismEngine:
    """Compose LearningSearch with the language model into an explanation.

    Args:
        learning_search: Search over stored learnings.
        llm: Language model used for the prose synthesis.
        default_prompt: Bridge prompt used when no custom prompt is given.
        clock: Timestamp source for results.
    """

    def __init__(
        self,
        learning_search: LearningSearch,
        llm: LanguageModel,
        default_prompt: str = SYNTHESIS_PROMPT,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.learning_search = learning_search
        self.llm = llm
        self.default_prompt = default_prompt
        self.clock = clock

    async def explain(self, new_concept: str, options: ExplainOptions | None = None) -> ExplanationResult:
        """Explain *new_concept*. No matching learnings is a normal, empty result."""
        options = options or ExplainOptions()
        hits = await self.learning_search.asearch(
            new_concept, LearningSearchOptions(limit=options.learning_limit)
        )
        if not hits:
            logger.info("No related learnings for %r", new_concept)
            return ExplanationResult(
                new_concept=new_concept,
                synthesis=NO_MATCH_SYNTHESIS,
                timestamp=self.clock(),
            )

        learnings = [h.learning for h in hits]
        scores = [h.score for h in hits]
        synthesis = await self.llm.agenerate(
            options.custom_prompt or self.default_prompt,
            build_synthesis_context(new_concept, learnings),
            temperature=options.temperature,
        )
        return ExplanationResult(
            new_concept=new_concept,
            synthesis=synthesis,
            related_learnings=learnings,
            insights=extract_insights(learnings),
            confidence=calculate_confidence(scores),
            timestamp=self.clock(),
            scores=scores,
        )
