"""llm-archive rich error messages with actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from llm_archive.cli.errors import err_no_db
    console.print(err_no_db("archive.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from llm_archive.rag.llm_client import _PROVIDER_ENV


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'gemini'. Set:  export GEMINI_API_KEY=...
    """
    env_var = _PROVIDER_ENV.get(provider.lower()) or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=..."
    )


def err_no_db(db_path: str) -> str:
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  llm-archive ingest conversations.json"
    )


def err_file_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] File not found: '{path}'.\n"
        "  Export your conversations (Settings → Export data) and pass the conversations.json path."
    )


def err_invalid_export(path: str, detail: str) -> str:
    return (
        f"[red]Error:[/] Cannot import '{path}': {detail}\n"
        "  Pass the unmodified conversations.json from a Claude data export."
    )


def err_config(detail: str) -> str:
    return (
        f"[red]Error:[/] {detail}\n"
        "  Fix llm-archive.yaml or ~/.llm-archive/config.yaml and retry."
    )


def err_dimension_mismatch(detail: str) -> str:
    """Stored vectors were produced by a model with another dimensionality."""
    return (
        f"[red]Error:[/] Embedding dimension mismatch.\n"
        f"  {detail}\n"
        "  Either set embedding.model / embedding.dimensions back to the original model,\n"
        "  or purge and rebuild:  llm-archive purge-embeddings --yes && llm-archive reembed"
    )


def err_no_learnings() -> str:
    return (
        "[yellow]No learnings stored yet.[/]\n"
        "  Run:  llm-archive learnings extract --days 30"
    )
