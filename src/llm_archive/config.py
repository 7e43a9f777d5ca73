"""Layered configuration for llm-archive.

Winning order: CLI flags (applied by callers), LLM_ARCHIVE_EMBEDDING_MODEL /
LLM_ARCHIVE_LLM_MODEL / LLM_ARCHIVE_DB_PATH, ./llm-archive.yaml,
~/.llm-archive/config.yaml, then the dataclass defaults below.

The global file is shared across projects and is rejected if it holds
anything that looks like a credential. Files are parsed with yaml.safe_load.
"""

from __future__ import annotations

import os
import re
import warnings
from collections.abc import Iterator
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from llm_archive.errors import ConfigurationError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".llm-archive"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "llm-archive.yaml"

# Credential-looking key names. max_tokens and batch_size must not match.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)|(?:^|_)(?:token|secret)$|passw(?:ord|d)|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "llm", "db", "search", "ingestion", "extraction"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ConfigurationError, ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (llm-archive.yaml: embedding:).

    ``dimensions`` must match what the model returns; it fixes the
    dimensionality of every VectorStore.
    """

    model: str = "gemini/text-embedding-004"
    dimensions: int = 768
    batch_size: int = 100
    rate_limit_delay: float = 0.1


@dataclass
class LLMCfg:
    """Language model configuration (llm-archive.yaml: llm:)."""

    model: str = "gemini/gemini-2.0-flash"
    temperature: float = 0.7
    max_tokens: int = 2000
    synthesis_prompt: str | None = None  # path to a template file


@dataclass
class DBCfg:
    path: str = "llm-archive.db"


@dataclass
class SearchCfg:
    """Search defaults (llm-archive.yaml: search:)."""

    default_limit: int = 20
    learning_limit: int = 7
    context_before: int = 2
    context_after: int = 1


@dataclass
class IngestionCfg:
    chunk_size: int = 3000


@dataclass
class ExtractionCfg:
    """Batch extraction configuration (llm-archive.yaml: extraction:)."""

    concurrency: int = 10
    max_attempts: int = 3
    conversation_prompt: str | None = None  # path to a template file
    topic_prompt: str | None = None


@dataclass
class ArchiveConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    llm: LLMCfg = field(default_factory=LLMCfg)
    db: DBCfg = field(default_factory=DBCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    ingestion: IngestionCfg = field(default_factory=IngestionCfg)
    extraction: ExtractionCfg = field(default_factory=ExtractionCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _key_paths(data: Any, prefix: str = "") -> Iterator[tuple[str, str]]:
    """Yield ``(dotted_path, key)`` for every mapping key under *data*."""
    if not isinstance(data, dict):
        return
    for key, value in data.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        yield dotted, str(key)
        yield from _key_paths(value, dotted)


def _reject_secrets(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError on the first key under *data* that looks like a credential."""
    for dotted, key in _key_paths(data):
        if _API_KEY_RE.search(key):
            env_name = key.upper().replace("-", "_")
            raise ConfigError(
                f"Global config '{source}' contains a forbidden key '{dotted}'.\n"
                f"  Credentials belong in the environment, e.g. export {env_name}=<value>,\n"
                f"  then delete '{dotted}' from {source.name}."
            )


def _warn_unknown_sections(data: dict[str, Any], source: Path) -> None:
    for key in [k for k in data if k not in _KNOWN_SECTIONS]:
        warnings.warn(f"Unknown config key '{key}' in '{source}', ignored.", UserWarning, stacklevel=4)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level")
    return data


def _number(section: dict[str, Any], name: str, key: str, default: Any, kind: type, minimum: float) -> Any:
    """Read ``section[key]`` as *kind*, rejecting values below *minimum*."""
    raw = section.get(key, default)
    try:
        value = kind(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{name}.{key} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name}.{key} must be >= {minimum}, got {value}")
    return value


def _optional_str(value: Any) -> str | None:
    return str(value) if value else None


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _overlay(target: dict[str, Any], layer: dict[str, Any]) -> None:
    """Merge *layer* into *target* in place; nested sections merge key by key."""
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            target[key] = {**current}
            _overlay(target[key], value)
        else:
            target[key] = value


def _cfg_from_dict(data: dict[str, Any]) -> ArchiveConfig:
    """Build an *ArchiveConfig* from a merged raw YAML dict."""
    cfg = ArchiveConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        d = cfg.embedding
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", d.model)),
            dimensions=_number(e, "embedding", "dimensions", d.dimensions, int, 1),
            batch_size=_number(e, "embedding", "batch_size", d.batch_size, int, 1),
            rate_limit_delay=_number(
                e, "embedding", "rate_limit_delay", d.rate_limit_delay, float, 0
            ),
        )

    if "llm" in data:
        g = data["llm"] or {}
        d = cfg.llm
        cfg.llm = LLMCfg(
            model=str(g.get("model", d.model)),
            temperature=_number(g, "llm", "temperature", d.temperature, float, 0),
            max_tokens=_number(g, "llm", "max_tokens", d.max_tokens, int, 1),
            synthesis_prompt=_optional_str(g.get("synthesis_prompt")),
        )

    if "db" in data:
        cfg.db = DBCfg(path=str((data["db"] or {}).get("path", cfg.db.path)))

    if "search" in data:
        s = data["search"] or {}
        d = cfg.search
        cfg.search = SearchCfg(
            default_limit=_number(s, "search", "default_limit", d.default_limit, int, 1),
            learning_limit=_number(s, "search", "learning_limit", d.learning_limit, int, 1),
            context_before=_number(s, "search", "context_before", d.context_before, int, 0),
            context_after=_number(s, "search", "context_after", d.context_after, int, 0),
        )

    if "ingestion" in data:
        i = data["ingestion"] or {}
        cfg.ingestion = IngestionCfg(
            chunk_size=_number(i, "ingestion", "chunk_size", cfg.ingestion.chunk_size, int, 1),
        )

    if "extraction" in data:
        x = data["extraction"] or {}
        d = cfg.extraction
        cfg.extraction = ExtractionCfg(
            concurrency=_number(x, "extraction", "concurrency", d.concurrency, int, 1),
            max_attempts=_number(x, "extraction", "max_attempts", d.max_attempts, int, 1),
            conversation_prompt=_optional_str(x.get("conversation_prompt")),
            topic_prompt=_optional_str(x.get("topic_prompt")),
        )

    return cfg


def _apply_env_overrides(cfg: ArchiveConfig) -> ArchiveConfig:
    """Apply LLM_ARCHIVE_* environment variable overrides."""
    if model := os.environ.get("LLM_ARCHIVE_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("LLM_ARCHIVE_LLM_MODEL"):
        cfg.llm.model = model
    if path := os.environ.get("LLM_ARCHIVE_DB_PATH"):
        cfg.db.path = path
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> ArchiveConfig:
    """Load and return a merged *ArchiveConfig*.

    Layers, lowest first: defaults, global file, *llm-archive.yaml* in
    *project_dir* (CWD by default), LLM_ARCHIVE_* environment variables.
    CLI flags are applied by the caller.

    Raises:
        ConfigError: If the global file holds credential-like keys, a file
            is not a YAML mapping, or a numeric value is invalid.
    """
    global_path = _GLOBAL_CONFIG_PATH if global_config_path is None else global_config_path
    project_path = (project_dir or Path.cwd()) / _PROJECT_CONFIG_NAME

    merged: dict[str, Any] = {}
    for path, is_global in ((global_path, True), (project_path, False)):
        if not path.exists():
            continue
        layer = _read_yaml(path)
        if is_global:
            _reject_secrets(layer, path)
        _warn_unknown_sections(layer, path)
        _overlay(merged, layer)

    return _apply_env_overrides(_cfg_from_dict(merged))


_GLOBAL_HEADER = """\
# llm-archive global configuration: model defaults only.
# Credentials are read from the environment, for example
#   export GEMINI_API_KEY=...
#   export OPENAI_API_KEY=...

"""


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Write the default global config (mode 0600, dir 0700) unless it exists; return its path."""
    target = _GLOBAL_CONFIG_PATH if global_config_path is None else global_config_path
    if target.exists():
        return target

    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    defaults = ArchiveConfig()
    body = yaml.safe_dump(
        {
            "embedding": {"model": defaults.embedding.model, "dimensions": defaults.embedding.dimensions},
            "llm": {"model": defaults.llm.model},
            "search": asdict(defaults.search),
        },
        sort_keys=False,
    )
    target.write_text(_GLOBAL_HEADER + body, encoding="utf-8")
    target.chmod(0o600)
    return target
