"""llm-archive CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from llm_archive.cli.explain import explain_cmd
from llm_archive.cli.ingest import ingest_cmd
from llm_archive.cli.learnings import learnings_app
from llm_archive.cli.search import search_cmd
from llm_archive.cli.status import purge_embeddings_cmd, reembed_cmd, status_cmd


def _version() -> str:
    try:
        return importlib.metadata.version("llm-archive")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"llm-archive {_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="llm-archive",
    help=(
        "llm-archive: search your LLM conversation history and learn from it.\n\n"
        "  llm-archive ingest     Import and embed a conversations export.\n"
        "  llm-archive explain    Explain a new concept through your past learnings."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """llm-archive: retrieval & distillation over your LLM conversations."""


app.command("ingest")(ingest_cmd)
app.command("search")(search_cmd)
app.command("explain")(explain_cmd)
app.command("status")(status_cmd)
app.command("purge-embeddings")(purge_embeddings_cmd)
app.command("reembed")(reembed_cmd)
app.add_typer(learnings_app, name="learnings")


@app.command("version")
def version_cmd() -> None:
    """Show the installed llm-archive version."""
    typer.echo(f"llm-archive {_version()}")


if __name__ == "__main__":
    app()
