"""llm-archive learnings: extract, search and browse distilled learnings."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from llm_archive.cli.errors import err_no_learnings
from llm_archive.cli.runtime import (
    console,
    fail_on_archive_error,
    fail_on_config_error,
    load_cfg,
    make_embedder,
    make_llm,
    open_repo,
)
from llm_archive.cli.search import date_range_from
from llm_archive.db.models import Learning
from llm_archive.db.repository import Repository
from llm_archive.errors import ArchiveError, ConfigurationError, ExtractionError
from llm_archive.extract.extractors import (
    ConversationLearningExtractor,
    LearningExtractor,
    TopicLearningExtractor,
)
from llm_archive.extract.orchestrator import ExtractionOptions, ExtractionOrchestrator
from llm_archive.extract.prompts import (
    CONVERSATION_EXTRACTION_PROMPT,
    TOPIC_EXTRACTION_PROMPT,
    load_prompt,
)
from llm_archive.extract.retry import RetryPolicy
from llm_archive.rag.search import LearningSearch, LearningSearchOptions

learnings_app = typer.Typer(help="Extract, search and browse learnings.", no_args_is_help=True)


# ------------------------------------------------------------------
# learnings extract
# ------------------------------------------------------------------


@learnings_app.command("extract")
def extract_cmd(
    days: Annotated[int, typer.Option("--days", "-d", help="Extract from the last N days.")] = 10,
    all_: Annotated[bool, typer.Option("--all", help="Extract from every conversation.")] = False,
    start_date: Annotated[
        datetime | None, typer.Option("--start-date", formats=["%Y-%m-%d"])
    ] = None,
    end_date: Annotated[datetime | None, typer.Option("--end-date", formats=["%Y-%m-%d"])] = None,
    ids: Annotated[
        list[str] | None, typer.Option("--id", help="Specific source id (repeatable).")
    ] = None,
    topics: Annotated[
        bool, typer.Option("--topics", help="Extract from stored topics instead.")
    ] = False,
    overwrite: Annotated[
        bool, typer.Option("--overwrite", help="Re-extract sources that already have learnings.")
    ] = False,
    concurrency: Annotated[
        int | None, typer.Option("--concurrency", "-c", help="Parallel extractions.")
    ] = None,
    preview: Annotated[
        bool, typer.Option("--preview", help="Run on ONE source and print, without writing.")
    ] = False,
    db: Annotated[Path | None, typer.Option("--db", help="Archive database.")] = None,
) -> None:
    """Distil learnings from conversations (or topics) with the language model."""
    cfg = load_cfg(db)
    llm = make_llm(cfg)
    embedder = make_embedder(cfg)
    conn, repo = open_repo(cfg)
    try:
        if topics:
            extractor: LearningExtractor = TopicLearningExtractor(
                repo,
                llm,
                embedder,
                prompt=load_prompt(cfg.extraction.topic_prompt, TOPIC_EXTRACTION_PROMPT),
            )
        else:
            extractor = ConversationLearningExtractor(
                repo,
                llm,
                embedder,
                prompt=load_prompt(
                    cfg.extraction.conversation_prompt, CONVERSATION_EXTRACTION_PROMPT
                ),
            )

        if preview:
            _preview(extractor, repo, ids, topics)
            return

        source_ids = ids or _select_ids(repo, topics, days, all_, start_date, end_date)
        if not source_ids:
            console.print("[yellow]Nothing to extract in that range.[/]")
            return
        console.print(f"Processing {len(source_ids)} {extractor.source_type}s...\n")

        orchestrator = ExtractionOrchestrator(
            repo, extractor, RetryPolicy(max_attempts=cfg.extraction.max_attempts)
        )
        report = asyncio.run(
            orchestrator.extract_with_report(
                source_ids,
                ExtractionOptions(
                    concurrency=concurrency or cfg.extraction.concurrency,
                    overwrite=overwrite,
                    on_progress=_print_progress,
                    on_error=_print_error,
                ),
            )
        )
    except ConfigurationError as exc:
        fail_on_config_error(exc)
    except ArchiveError as exc:
        console.print(f"[red]Error:[/] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    finally:
        conn.close()

    console.print(
        f"\n[green]✓[/] Extracted {len(report.learnings)} learnings "
        f"({len(report.succeeded)} done, {len(report.skipped)} skipped, "
        f"{len(report.failed)} failed)"
    )
    for learning in report.learnings[:3]:
        console.print(f"\n• [bold]{escape(learning.title)}[/]\n  {escape(learning.insight[:100])}...")
    if report.failed:
        raise typer.Exit(1)


def _select_ids(
    repo: Repository,
    topics: bool,
    days: int,
    all_: bool,
    start_date: datetime | None,
    end_date: datetime | None,
) -> list[str]:
    if topics:
        return repo.list_topic_ids()
    end = datetime.now(timezone.utc)
    if all_:
        start = datetime(1970, 1, 1, tzinfo=timezone.utc)
    elif start_date is not None and end_date is not None:
        window = date_range_from(start_date, end_date)
        start, end = window.start, window.end
    else:
        start = end - timedelta(days=days)
    return repo.conversation_uuids_by_date_range(start, end)


def _preview(
    extractor: LearningExtractor, repo: Repository, ids: list[str] | None, topics: bool
) -> None:
    if ids:
        source = extractor.load(ids[0])
    elif topics:
        topic_ids = repo.list_topic_ids()
        if not topic_ids:
            console.print("[yellow]No topics stored.[/]")
            return
        source = extractor.load(topic_ids[0])
    else:
        source = repo.random_conversation()
        if source is None:
            console.print("[yellow]No conversations archived yet.[/]")
            return

    ref = extractor.source_ref(source)
    console.print(f"[bold]PREVIEW[/] (no database writes): {ref.source_type} {ref.source_id}\n")
    learnings = asyncio.run(extractor.extract(source, persist=False))
    for learning in learnings:
        _print_learning(learning)
    console.print(f"\nTotal: {len(learnings)}")


def _print_progress(completed: int, total: int, title: str) -> None:
    console.print(f"[{completed}/{total}] [green]✓[/] {escape(title)}")


def _print_error(source_id: str, error: ExtractionError) -> None:
    console.print(f"[red][ERROR][/] {source_id}: {escape(str(error))}")


def _print_learning(learning: Learning) -> None:
    console.print(f"\n[bold]{escape(learning.title)}[/]")
    console.print(f"  [dim]Problem space:[/] {escape(learning.problem_space)}")
    console.print(f"  [dim]Insight:[/] {escape(learning.insight)}")
    for block in learning.blocks:
        console.print(f"    {escape(f'[{block.block_type.value}]')} Q: {escape(block.question)}")
        console.print(f"    {' ' * len(block.block_type.value)}   A: {escape(block.answer)}")


# ------------------------------------------------------------------
# learnings search
# ------------------------------------------------------------------


@learnings_app.command("search")
def search_cmd(
    query: Annotated[str, typer.Argument(help="Concept or question.")],
    limit: Annotated[int | None, typer.Option("--limit", "-n")] = None,
    source_type: Annotated[
        str | None, typer.Option("--source-type", help="'conversation' or 'topic'.")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Archive database.")] = None,
) -> None:
    """Semantic search over learnings."""
    cfg = load_cfg(db)
    embedder = make_embedder(cfg)
    conn, repo = open_repo(cfg)
    try:
        search = LearningSearch.from_repository(repo, embedder)
        results = search.search(
            query,
            LearningSearchOptions(limit=limit or cfg.search.default_limit, source_type=source_type),
        )
    except ConfigurationError as exc:
        fail_on_config_error(exc)
    except ArchiveError as exc:
        fail_on_archive_error(exc, "Learning search")
    finally:
        conn.close()

    if not results:
        console.print("[yellow]No matching learnings.[/]")
        return
    table = Table(show_lines=False)
    table.add_column("Score", justify="right")
    table.add_column("Title")
    table.add_column("Insight")
    table.add_column("Source")
    for r in results:
        source = escape(r.source.title) if r.source else "[dim](source deleted)[/]"
        table.add_row(f"{r.score:.3f}", escape(r.learning.title), escape(r.learning.insight), source)
    console.print(table)


# ------------------------------------------------------------------
# learnings list
# ------------------------------------------------------------------


@learnings_app.command("list")
def list_cmd(
    limit: Annotated[int, typer.Option("--limit", "-n")] = 20,
    offset: Annotated[int, typer.Option("--offset")] = 0,
    db: Annotated[Path | None, typer.Option("--db", help="Archive database.")] = None,
) -> None:
    """List learnings, most recent first."""
    cfg = load_cfg(db)
    conn, repo = open_repo(cfg)
    try:
        page = repo.list_learnings(limit=limit, offset=offset)
    finally:
        conn.close()

    if page.total == 0:
        console.print(err_no_learnings())
        return
    table = Table()
    table.add_column("Created")
    table.add_column("Title")
    table.add_column("Source")
    for learning in page.learnings:
        table.add_row(
            f"{learning.created_at:%Y-%m-%d}",
            escape(learning.title),
            f"{learning.source_type}:{learning.source_id[:8]}",
        )
    console.print(table)
    shown_to = offset + len(page.learnings)
    more = f"  next: --offset {shown_to}" if page.has_more else ""
    console.print(f"[dim]{offset + 1}-{shown_to} of {page.total}{more}[/]")
