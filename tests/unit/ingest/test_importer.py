"""Tests for the Claude export importer."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from llm_archive.errors import ValidationError
from llm_archive.ingest.importer import (
    NO_TEXT_PLACEHOLDER,
    ClaudeImporter,
    flatten_content,
    normalize_sender,
    parse_timestamp,
)


def _raw_conversation(**overrides):
    raw = {
        "uuid": "conv-1",
        "name": "Rust lifetimes",
        "created_at": "2024-03-01T12:00:00.000000Z",
        "updated_at": "2024-03-01T13:00:00Z",
        "chat_messages": [
            {
                "uuid": "m-0",
                "sender": "human",
                "text": "What is a lifetime?",
                "created_at": "2024-03-01T12:00:00Z",
            },
            {
                "uuid": "m-1",
                "sender": "assistant",
                "text": "",
                "content": [{"type": "text", "text": "A scope for references."}],
                "created_at": "2024-03-01T12:00:05Z",
            },
        ],
    }
    raw.update(overrides)
    return raw


# ---------------------------------------------------------------------------
# normalize_conversation
# ---------------------------------------------------------------------------


def test_normalize_conversation():
    conv = ClaudeImporter().normalize_conversation(_raw_conversation())
    assert conv.uuid == "conv-1"
    assert conv.title == "Rust lifetimes"
    assert conv.platform == "claude"
    assert conv.created_at == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert conv.message_count == 2
    assert [m.conversation_index for m in conv.messages] == [0, 1]
    assert [m.sender for m in conv.messages] == ["human", "assistant"]
    assert conv.messages[1].text == "A scope for references."
    assert all(m.conversation_uuid == "conv-1" for m in conv.messages)


def test_missing_updated_at_falls_back_to_created_at():
    raw = _raw_conversation()
    del raw["updated_at"]
    conv = ClaudeImporter().normalize_conversation(raw)
    assert conv.updated_at == conv.created_at


def test_missing_required_field_raises():
    raw = _raw_conversation()
    del raw["created_at"]
    with pytest.raises(ValidationError, match="missing field"):
        ClaudeImporter().normalize_conversation(raw)


def test_unknown_sender_raises():
    with pytest.raises(ValidationError, match="Unknown sender type: system"):
        normalize_sender("system")


# ---------------------------------------------------------------------------
# flatten_content
# ---------------------------------------------------------------------------


def test_flatten_text_and_content_deduplicated():
    message = {"text": "Same", "content": [{"type": "text", "text": "Same"}]}
    assert flatten_content(message) == "Same"


def test_flatten_tool_output_and_attachment():
    message = {
        "text": "Run it",
        "content": [
            {"type": "tool_use", "name": "bash"},
            {"type": "tool_result", "content": "exit 0"},
        ],
        "attachments": [{"file_name": "notes.txt", "extracted_content": "line one"}],
    }
    assert flatten_content(message) == (
        "Run it\n\n[Tool Output]: exit 0\n\n[Attachment: notes.txt]\nline one"
    )


def test_flatten_empty_message_placeholder():
    assert flatten_content({"text": "   ", "content": []}) == NO_TEXT_PLACEHOLDER


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def test_parse_timestamp_zulu():
    assert parse_timestamp("2024-03-01T12:00:00Z") == datetime(
        2024, 3, 1, 12, 0, tzinfo=timezone.utc
    )


def test_parse_timestamp_naive_is_utc():
    assert parse_timestamp("2024-03-01T12:00:00").tzinfo == timezone.utc


def test_parse_timestamp_invalid():
    with pytest.raises(ValidationError):
        parse_timestamp("yesterday")


# ---------------------------------------------------------------------------
# import_file
# ---------------------------------------------------------------------------


def test_import_file(tmp_path):
    path = tmp_path / "conversations.json"
    path.write_text(json.dumps([_raw_conversation(), _raw_conversation(uuid="conv-2")]))
    conversations = list(ClaudeImporter().import_file(path))
    assert [c.uuid for c in conversations] == ["conv-1", "conv-2"]


def test_import_file_invalid_json(tmp_path):
    path = tmp_path / "conversations.json"
    path.write_text("{not json")
    with pytest.raises(ValidationError, match="not valid JSON"):
        list(ClaudeImporter().import_file(path))


def test_import_file_not_an_array(tmp_path):
    path = tmp_path / "conversations.json"
    path.write_text(json.dumps({"uuid": "conv-1"}))
    with pytest.raises(ValidationError, match="JSON array"):
        list(ClaudeImporter().import_file(path))
