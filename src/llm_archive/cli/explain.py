"""llm-archive explain: bridge a new concept to past learnings."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.panel import Panel

from llm_archive.cli.runtime import (
    console,
    fail_on_archive_error,
    fail_on_config_error,
    load_cfg,
    make_embedder,
    make_llm,
    open_repo,
)
from llm_archive.errors import ArchiveError, ConfigurationError
from llm_archive.extract.prompts import SYNTHESIS_PROMPT, load_prompt
from llm_archive.rag.isomorphism import ExplainOptions, IsomorphismEngine
from llm_archive.rag.search import LearningSearch


def explain_cmd(
    concept: Annotated[str, typer.Argument(help="The concept you are trying to understand.")],
    limit: Annotated[
        int | None, typer.Option("--limit", "-n", help="Related learnings to use.")
    ] = None,
    temperature: Annotated[float | None, typer.Option("--temperature")] = None,
    prompt_file: Annotated[
        Path | None, typer.Option("--prompt-file", help="Custom synthesis prompt.")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Archive database.")] = None,
) -> None:
    """Explain CONCEPT by analogy to what you already learned."""
    cfg = load_cfg(db)
    embedder = make_embedder(cfg)
    llm = make_llm(cfg)
    conn, repo = open_repo(cfg)
    try:
        engine = IsomorphismEngine(
            LearningSearch.from_repository(repo, embedder),
            llm,
            default_prompt=load_prompt(cfg.llm.synthesis_prompt, SYNTHESIS_PROMPT),
        )
        result = asyncio.run(
            engine.explain(
                concept,
                ExplainOptions(
                    learning_limit=limit or cfg.search.learning_limit,
                    custom_prompt=load_prompt(prompt_file, "") or None,
                    temperature=temperature,
                ),
            )
        )
    except ConfigurationError as exc:
        fail_on_config_error(exc)
    except ArchiveError as exc:
        fail_on_archive_error(exc, "Synthesis")
    finally:
        conn.close()

    console.print(
        Panel(
            escape(result.synthesis),
            title=f"[bold]{escape(concept)}[/]  [dim]confidence {result.confidence:.2f}[/]",
            title_align="left",
        )
    )
    if result.insights:
        console.print("\n[bold]Key insights from your past:[/]")
        for insight in result.insights:
            console.print(f"  • {escape(insight)}")
    if result.related_learnings:
        console.print("\n[bold]Related learnings:[/]")
        for learning, score in zip(result.related_learnings, result.scores):
            console.print(f"  {score:.3f}  {escape(learning.title)}")
