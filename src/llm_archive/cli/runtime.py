"""Shared wiring for CLI commands: config, database, model clients."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from llm_archive.cli.errors import err_config, err_dimension_mismatch, err_no_api_key, err_no_db
from llm_archive.config import ArchiveConfig, ConfigError, load_config
from llm_archive.db.connection import Database
from llm_archive.db.repository import Repository
from llm_archive.db.schema import initialize
from llm_archive.errors import ArchiveError, ConfigurationError
from llm_archive.rag.llm_client import (
    LiteLLMEmbedder,
    LiteLLMLanguageModel,
    provider_of,
    validate_api_key,
)

console = Console()


def load_cfg(db: Path | None = None) -> ArchiveConfig:
    """Load config, exiting with an actionable message on errors. ``--db`` wins."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if db is not None:
        cfg.db.path = str(db)
    return cfg


def open_repo(cfg: ArchiveConfig, must_exist: bool = True) -> tuple[sqlite3.Connection, Repository]:
    """Open (and migrate) the archive database. The caller closes the connection."""
    path = Path(cfg.db.path)
    if must_exist and not path.exists():
        console.print(err_no_db(str(path)))
        raise typer.Exit(1)
    conn = Database(path).connect()
    initialize(conn)
    return conn, Repository(conn)


def require_key(model: str) -> None:
    try:
        validate_api_key(model)
    except ConfigurationError as exc:
        console.print(err_no_api_key(provider_of(model)))
        raise typer.Exit(1) from exc


def make_embedder(cfg: ArchiveConfig) -> LiteLLMEmbedder:
    require_key(cfg.embedding.model)
    return LiteLLMEmbedder(
        cfg.embedding.model,
        dimensions=cfg.embedding.dimensions,
        batch_size=cfg.embedding.batch_size,
        rate_limit_delay=cfg.embedding.rate_limit_delay,
    )


def make_llm(cfg: ArchiveConfig, temperature: float | None = None) -> LiteLLMLanguageModel:
    require_key(cfg.llm.model)
    return LiteLLMLanguageModel(
        cfg.llm.model,
        temperature=cfg.llm.temperature if temperature is None else temperature,
        max_tokens=cfg.llm.max_tokens,
    )


def fail_on_config_error(exc: ConfigurationError) -> None:
    """Render a ConfigurationError raised by the core and exit 1."""
    if "dimension" in str(exc).lower():
        console.print(err_dimension_mismatch(str(exc)))
    else:
        console.print(err_config(str(exc)))
    raise typer.Exit(1) from exc


def fail_on_archive_error(exc: ArchiveError, action: str) -> None:
    """Render any other core error as one red line and exit 1."""
    console.print(f"[red]Error:[/] {action} failed: {escape(str(exc))}")
    raise typer.Exit(1) from exc
