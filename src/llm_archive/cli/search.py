"""llm-archive search: semantic search over archived messages."""

from __future__ import annotations

from datetime import datetime, timezone
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
    open_repo,
)
from llm_archive.errors import ArchiveError, ConfigurationError
from llm_archive.rag.search import DateRange, SearchEngine, SearchOptions, SearchResult

_SNIPPET = 300


def date_range_from(since: datetime | None, until: datetime | None) -> DateRange | None:
    """Build an inclusive range from optional CLI dates (``until`` covers the whole day)."""
    if since is None and until is None:
        return None
    start = since or datetime(1970, 1, 1)
    end = (until or datetime.now(timezone.utc).replace(tzinfo=None)).replace(
        hour=23, minute=59, second=59, microsecond=999999
    )
    return DateRange(start, end)


def search_cmd(
    query: Annotated[str, typer.Argument(help="What to look for.")],
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Maximum results.")] = None,
    sender: Annotated[
        str | None, typer.Option("--sender", help="Only 'human' or 'assistant' messages.")
    ] = None,
    since: Annotated[
        datetime | None, typer.Option("--since", formats=["%Y-%m-%d"], help="Start date.")
    ] = None,
    until: Annotated[
        datetime | None, typer.Option("--until", formats=["%Y-%m-%d"], help="End date.")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Archive database.")] = None,
) -> None:
    """Search past conversations by meaning."""
    cfg = load_cfg(db)
    embedder = make_embedder(cfg)
    conn, repo = open_repo(cfg)
    try:
        engine = SearchEngine.from_repository(
            repo,
            embedder,
            context_before=cfg.search.context_before,
            context_after=cfg.search.context_after,
        )
        results = engine.search(
            query,
            SearchOptions(
                limit=limit or cfg.search.default_limit,
                date_range=date_range_from(since, until),
                sender=sender,
            ),
        )
    except ConfigurationError as exc:
        fail_on_config_error(exc)
    except ArchiveError as exc:
        fail_on_archive_error(exc, "Search")
    finally:
        conn.close()

    if not results:
        console.print("[yellow]No matching messages.[/]")
        return
    for i, result in enumerate(results, start=1):
        console.print(_render(i, result))


def _render(rank: int, result: SearchResult) -> Panel:
    lines = []
    for m in result.previous_messages:
        lines.append(f"[dim][{m.sender.upper()}]: {_clip(m.text)}[/]")
    lines.append(f"[bold][{result.message.sender.upper()}]: {_clip(result.message.text)}[/]")
    for m in result.next_messages:
        lines.append(f"[dim][{m.sender.upper()}]: {_clip(m.text)}[/]")
    title = (
        f"{rank}. {escape(result.conversation.title or '(untitled)')}  "
        f"[dim]{result.conversation.created_at:%Y-%m-%d} · score {result.score:.3f}[/]"
    )
    return Panel("\n".join(lines), title=title, title_align="left", expand=True)


def _clip(text: str) -> str:
    clipped = text if len(text) <= _SNIPPET else text[:_SNIPPET] + "…"
    return escape(clipped)
