"""
Deterministic Summaries

Builds the text of summary knowledge nodes for ingested documents and logged
conversations when the caller does not supply one. No LLM is involved: the
digest is a header followed by a preview of the source text.
"""

from __future__ import annotations

import re
from typing import Literal, Sequence

from .models import ConversationMessage

SummaryStatus = Literal["created", "skipped", "error"]

SUMMARY_HEADER = (
    "MVP Summary (no LLM):\n"
    "This summary is a deterministic digest. Pass summary_override for a better one."
)

CONVERSATION_SUMMARY_TAG = "conversation-summary"

_WHITESPACE = re.compile(r"\s+")


def summarize_document(text: str, max_lines: int = 12) -> str:
    """Header, document size and the first ``max_lines`` non-blank lines."""
    clean = text.replace("\r", "").strip()
    lines = [line.strip() for line in clean.split("\n") if line.strip()]
    preview = "\n".join(lines[:max_lines]) or "(empty document)"

    return "\n".join([
        SUMMARY_HEADER,
        "",
        f"Document size: {len(clean)} chars",
        "",
        "Preview:",
        preview,
    ])


def summarize_conversation(
    messages: Sequence[ConversationMessage],
    max_chars: int = 1200,
    max_messages: int = 12,
) -> str:
    """
    Header plus one ``Role: content`` line per leading message.

    Whitespace inside each message collapses to single spaces. The body is
    clamped to ``max_chars`` with a trailing ``...``.
    """
    taken = messages[:max_messages]
    lines = []
    for m in taken:
        content = _WHITESPACE.sub(" ", m.content).strip()
        if content:
            lines.append(f"{m.role.value.capitalize()}: {content}")

    body = "\n".join(lines)
    omitted = len(messages) - len(taken)
    if omitted > 0:
        body += f"\n… ({omitted} more message(s) omitted)"

    if len(body) > max_chars:
        body = body[: max_chars - 3] + "..."

    return "\n".join([SUMMARY_HEADER, "", body])
