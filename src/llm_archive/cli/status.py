"""llm-archive status, purge-embeddings and reembed commands."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from llm_archive.cli.runtime import (
    console,
    fail_on_archive_error,
    fail_on_config_error,
    load_cfg,
    make_embedder,
    open_repo,
)
from llm_archive.db.schema import schema_version
from llm_archive.errors import ArchiveError, ConfigurationError
from llm_archive.extract.extractors import reembed_learnings
from llm_archive.ingest.ingestor import ConversationIngestor


def status_cmd(
    db: Annotated[Path | None, typer.Option("--db", help="Archive database.")] = None,
) -> None:
    """Show archive statistics and the active model configuration."""
    cfg = load_cfg(db)

    models = Table.grid(padding=(0, 2))
    models.add_row("Database", cfg.db.path)
    models.add_row("Embedding model", f"{cfg.embedding.model} ({cfg.embedding.dimensions} dims)")
    models.add_row("Language model", cfg.llm.model)
    console.print(Panel(models, title="[bold]Configuration[/]", expand=False))

    if not Path(cfg.db.path).exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  llm-archive ingest conversations.json",
                title="[bold]Archive[/]",
                expand=False,
            )
        )
        return

    conn, repo = open_repo(cfg)
    try:
        stats = Table.grid(padding=(0, 2))
        stats.add_row("Schema version", str(schema_version(conn)))
        stats.add_row("Conversations", str(repo.count_conversations()))
        stats.add_row("Messages", str(repo.count_messages()))
        stats.add_row(
            "Chunks (embedded)",
            f"{repo.count_chunks()} ({repo.count_chunks(embedded_only=True)})",
        )
        stats.add_row("Topics", str(len(repo.list_topic_ids())))
        stats.add_row(
            "Learnings",
            f"{repo.count_learnings()} "
            f"(conversation {repo.count_learnings('conversation')}, "
            f"topic {repo.count_learnings('topic')})",
        )
    finally:
        conn.close()
    console.print(Panel(stats, title="[bold]Archive[/]", expand=False))


def purge_embeddings_cmd(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    db: Annotated[Path | None, typer.Option("--db", help="Archive database.")] = None,
) -> None:
    """Drop every stored vector (needed after switching to a model of other dimensions)."""
    cfg = load_cfg(db)
    if not yes:
        typer.confirm(
            f"Delete all chunk and learning embeddings in {cfg.db.path}?", abort=True
        )
    conn, repo = open_repo(cfg)
    try:
        cleared = repo.clear_embeddings()
    finally:
        conn.close()
    console.print(f"[green]✓[/] Cleared {cleared} embeddings.")
    console.print("  Run:  llm-archive reembed   to rebuild them with the configured model")


def reembed_cmd(
    db: Annotated[Path | None, typer.Option("--db", help="Archive database.")] = None,
) -> None:
    """Embed every chunk and learning stored without a vector, using the configured model."""
    cfg = load_cfg(db)
    embedder = make_embedder(cfg)
    conn, repo = open_repo(cfg)
    try:
        with console.status("Embedding chunks and learnings..."):
            chunks = ConversationIngestor(repo, embedder).reembed_missing()
            learnings = reembed_learnings(repo, embedder)
    except ConfigurationError as exc:
        fail_on_config_error(exc)
    except ArchiveError as exc:
        fail_on_archive_error(exc, "Re-embedding")
    finally:
        conn.close()
    console.print(f"[green]✓[/] Embedded {chunks} chunks and {learnings} learnings.")
