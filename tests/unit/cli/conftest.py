"""CLI fixtures: isolated config, fake model clients."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from fakes import FakeEmbedder, FakeLanguageModel
from llm_archive.cli.main import app

VECTORS = {"rust": [1.0, 0.0, 0.0], "python": [0.0, 1.0, 0.0], "sql": [0.0, 0.0, 1.0]}


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """CWD with a 3-dimension llm-archive.yaml and no global config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("llm_archive.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    for var in ("LLM_ARCHIVE_EMBEDDING_MODEL", "LLM_ARCHIVE_LLM_MODEL", "LLM_ARCHIVE_DB_PATH"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    (tmp_path / "llm-archive.yaml").write_text(
        yaml.dump({"embedding": {"dimensions": 3}, "db": {"path": str(tmp_path / "archive.db")}}),
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def embedder():
    fake = FakeEmbedder(VECTORS)
    with patch("llm_archive.cli.runtime.LiteLLMEmbedder", return_value=fake):
        yield fake


@pytest.fixture
def llm():
    fake = FakeLanguageModel()
    with patch("llm_archive.cli.runtime.LiteLLMLanguageModel", return_value=fake):
        yield fake


@pytest.fixture
def export_file(workdir: Path) -> Path:
    path = workdir / "conversations.json"
    path.write_text(
        json.dumps(
            [
                {
                    "uuid": "conv-1",
                    "name": "Ownership",
                    "created_at": "2024-03-01T12:00:00Z",
                    "chat_messages": [
                        {"uuid": "m-0", "sender": "human", "text": "Explain rust ownership",
                         "created_at": "2024-03-01T12:00:00Z"},
                        {"uuid": "m-1", "sender": "assistant", "text": "Every value has one owner",
                         "created_at": "2024-03-01T12:00:05Z"},
                    ],
                },
                {
                    "uuid": "conv-2",
                    "name": "Joins",
                    "created_at": "2024-03-02T12:00:00Z",
                    "chat_messages": [
                        {"uuid": "m-2", "sender": "human", "text": "sql joins please",
                         "created_at": "2024-03-02T12:00:00Z"},
                    ],
                },
            ]
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def ingested(workdir: Path, export_file: Path, embedder: FakeEmbedder) -> Path:
    """Workdir whose archive already holds the export file."""
    assert CliRunner().invoke(app, ["ingest", str(export_file)]).exit_code == 0
    return workdir
