"""Default prompt templates for learning extraction and synthesis.

Every template is sent as ``template + "\\n\\n" + context``. Config keys
``extraction.conversation_prompt``, ``extraction.topic_prompt`` and
``llm.synthesis_prompt`` may point at files that replace them.
"""

from __future__ import annotations

from pathlib import Path

from llm_archive.errors import ConfigurationError

_OUTPUT_FORMAT = """
OUTPUT FORMAT:
Return ONLY a JSON array (no prose, no markdown). Each element:
{
  "title": "Descriptive, memorable title - specific enough for recall",
  "problemSpace": "When/why would you need this? The situation that makes it relevant",
  "insight": "The core technical or philosophical realization in 1-2 sentences",
  "blocks": [
    {"blockType": "qa" | "why" | "contrast", "question": "...", "answer": "..."}
  ]
}

Block types:
- "qa": definitional question and answer
- "why": elaborative interrogation ("Why does X hold?")
- "contrast": comparison against a neighbouring concept ("How does X differ from Y?")

Aim for 8-15 blocks per learning. Return [] if there is nothing worth keeping.
""".strip()

CONVERSATION_EXTRACTION_PROMPT = f"""
You are distilling durable learnings from a past conversation between a human and an AI assistant.

Extract only knowledge the human would want to remember months from now:
non-obvious technical insights, mental models, decisions and their reasons.
Skip small talk, one-off debugging noise and anything specific to a single file.

{_OUTPUT_FORMAT}
""".strip()

TOPIC_EXTRACTION_PROMPT = f"""
You are turning a topic from a document into flashcard-ready learnings.

Use the topic summary and key points as the backbone, and ground every answer in
the source passages when they are given. Prefer fewer, deeper learnings.

{_OUTPUT_FORMAT}
""".strip()

SYNTHESIS_PROMPT = """
You are an Isomorphism Engine. Your goal is NOT to explain the new concept from scratch,
but to "translate" it into concepts the user already knows.

INSTRUCTIONS:
1. Analyze the NEW CONCEPT the user is confused about.
2. Scan the RELATED LEARNINGS for structural/logical similarities.
   - Look for matching PATTERNS, not just matching keywords.
   - Example: "Go Channels" (new) ≈ "Redux Sagas" (old) because both handle async streams.
3. Generate a bridge explanation:
   - Start with: "This is structurally similar to [Known Concept] which you learned about..."
   - Explain the NEW concept using the OLD concept as a metaphor/analogy.
   - Be specific about what maps to what: "X in the new concept is like Y in your past learning."
4. If multiple learnings are relevant, weave them together to build understanding.

CRITICAL GUIDELINES:
- Focus on STRUCTURE and PATTERNS, not surface-level similarities.
- Be explicit about the mapping: "A does X, which is like how B did Y."
- Avoid generic explanations - leverage the specific learnings provided.
- If truly nothing matches, admit it: "This seems genuinely new - no strong analogies found."

Return your explanation as plain text (not JSON).
""".strip()


def load_prompt(path: str | Path | None, default: str) -> str:
    """Return the template stored at *path*, or *default* when *path* is None.

    Raises:
        ConfigurationError: If *path* is set but unreadable or empty.
    """
    if path is None:
        return default
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise ConfigurationError(f"Cannot read prompt template '{p}': {exc}") from exc
    if not text:
        raise ConfigurationError(f"Prompt template '{p}' is empty")
    return text
