"""Claude ``conversations.json`` export importer.

Flattens each message's mixed content into one searchable text:
  1. the ``text`` field, when non-blank
  2. ``text`` items from ``content`` (not repeated if identical to 1.)
  3. string ``tool_result`` content as ``[Tool Output]: ...``
  4. attachment extracted content as ``[Attachment: name]\\n...``
Parts are joined with blank lines; a message with none becomes
``[No text content]`` so every message still owns a chunk.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from llm_archive.db.models import Conversation, Message, Sender
from llm_archive.errors import ValidationError

NO_TEXT_PLACEHOLDER = "[No text content]"


class ClaudeImporter:
    """Parse Claude exports into Conversation models (messages indexed 0..n-1)."""

    platform = "claude"

    def import_file(self, path: Path | str) -> Iterator[Conversation]:
        """Yield every conversation in the export at *path*.

        Raises:
            ValidationError: If the file is not a JSON array of conversations.
        """
        p = Path(path)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValidationError(f"{p} is not valid JSON: {exc}") from exc
        yield from self.parse(data)

    def parse(self, data: Any) -> Iterator[Conversation]:
        if not isinstance(data, list):
            raise ValidationError("Claude export must be a JSON array of conversations")
        for raw in data:
            yield self.normalize_conversation(raw)

    def normalize_conversation(self, raw: dict[str, Any]) -> Conversation:
        try:
            conv_uuid = raw["uuid"]
            messages = [
                Message(
                    uuid=msg["uuid"],
                    conversation_uuid=conv_uuid,
                    conversation_index=index,
                    sender=normalize_sender(msg.get("sender", "")),
                    text=flatten_content(msg),
                    created_at=parse_timestamp(msg["created_at"]),
                )
                for index, msg in enumerate(raw.get("chat_messages") or [])
            ]
            return Conversation(
                uuid=conv_uuid,
                title=raw.get("name") or "",
                summary=raw.get("summary") or None,
                platform=self.platform,
                created_at=parse_timestamp(raw["created_at"]),
                updated_at=parse_timestamp(raw.get("updated_at") or raw["created_at"]),
                messages=messages,
                message_count=len(messages),
            )
        except KeyError as exc:
            raise ValidationError(
                f"Conversation {raw.get('uuid', '?')} is missing field {exc}"
            ) from exc


def normalize_sender(sender: str) -> str:
    try:
        return Sender(sender).value
    except ValueError:
        raise ValidationError(f"Unknown sender type: {sender}") from None


def flatten_content(message: dict[str, Any]) -> str:
    parts: list[str] = []

    text = message.get("text") or ""
    if text.strip():
        parts.append(text)

    for item in message.get("content") or []:
        kind = item.get("type")
        if kind == "text":
            item_text = item.get("text") or ""
            if item_text.strip() and item_text not in parts:
                parts.append(item_text)
        elif kind == "tool_result" and isinstance(item.get("content"), str):
            parts.append(f"[Tool Output]: {item['content']}")

    for attachment in message.get("attachments") or []:
        extracted = attachment.get("extracted_content") or ""
        if extracted.strip():
            parts.append(f"[Attachment: {attachment.get('file_name', '')}]\n{extracted}")

    return "\n\n".join(parts) if parts else NO_TEXT_PLACEHOLDER


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 export timestamp; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as exc:
        raise ValidationError(f"Invalid timestamp: {value!r}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
