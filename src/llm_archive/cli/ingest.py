"""llm-archive ingest: import a conversations export, chunk, embed and store it."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from llm_archive.cli.errors import err_file_not_found, err_invalid_export
from llm_archive.cli.runtime import console, fail_on_config_error, load_cfg, make_embedder, open_repo
from llm_archive.errors import ConfigurationError, ExternalServiceError, ValidationError
from llm_archive.ingest.chunking import Chunker
from llm_archive.ingest.importer import ClaudeImporter
from llm_archive.ingest.ingestor import ConversationIngestor

_IMPORTERS = {"claude": ClaudeImporter}


def ingest_cmd(
    file: Annotated[Path, typer.Argument(help="Path to the export (e.g. conversations.json).")],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Archive database (created if missing)."),
    ] = None,
    platform: Annotated[
        str,
        typer.Option("--platform", "-p", help="Export format."),
    ] = "claude",
) -> None:
    """Import and index conversations.

    Already-archived conversations are skipped; their chunks that lost
    their vectors (see purge-embeddings) are embedded again.
    """
    if not file.exists():
        console.print(err_file_not_found(str(file)))
        raise typer.Exit(1)
    importer_cls = _IMPORTERS.get(platform.lower())
    if importer_cls is None:
        console.print(
            f"[red]Error:[/] Unsupported platform '{platform}'.\n"
            f"  Use one of: {', '.join(sorted(_IMPORTERS))}"
        )
        raise typer.Exit(1)

    cfg = load_cfg(db)
    embedder = make_embedder(cfg)

    try:
        conversations = list(importer_cls().import_file(file))
    except ValidationError as exc:
        console.print(err_invalid_export(str(file), str(exc)))
        raise typer.Exit(1) from exc

    conn, repo = open_repo(cfg, must_exist=False)
    ingestor = ConversationIngestor(
        repo, embedder, chunker=Chunker(cfg.ingestion.chunk_size)
    )
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Embedding conversations", total=len(conversations))
            stats = ingestor.ingest(
                conversations,
                on_conversation=lambda _conv, _ingested: progress.advance(task),
            )
        reembedded = ingestor.reembed_missing()
    except ConfigurationError as exc:
        fail_on_config_error(exc)
    except (ValidationError, ExternalServiceError) as exc:
        console.print(f"[red]Error during ingestion:[/] {exc}")
        raise typer.Exit(1) from exc
    finally:
        conn.close()

    console.print(
        f"[green]✓[/] Imported {stats.conversations} conversations "
        f"({stats.messages} messages, {stats.chunks} chunks)"
    )
    if stats.skipped:
        console.print(f"  [dim]↷ {stats.skipped} already archived, skipped[/]")
    if reembedded:
        console.print(f"  [dim]↻ {reembedded} chunks without a vector re-embedded[/]")
