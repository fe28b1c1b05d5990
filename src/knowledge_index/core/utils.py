"""
Small helpers shared across the knowledge index: IDs, timestamps, slugs and
canonical file names for persisted entities.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Optional

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


def generate_id() -> str:
    """Return a new UUID4 string."""
    return str(uuid.uuid4())


def now_iso() -> str:
    """
    Current UTC time as ISO-8601 with millisecond precision and a trailing Z,
    e.g. ``2025-12-11T23:28:57.318Z``.
    """
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_iso(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp. Raises ValueError when unparseable.
    """
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def slugify(text: str, max_length: int = 80) -> str:
    slug = _SLUG_INVALID.sub("-", text.strip().lower()).strip("-")
    if not slug:
        return "untitled"

    if len(slug) > max_length:
        slug = slug[:max_length].rstrip("-")

    return slug


def short_id(id_: str, length: int = 8) -> str:
    if not id_:
        raise ValueError("short_id: id must be a non-empty string")
    return id_[:length]


def _dated_filename(kind: str, created_at: str, id_: str, title: Optional[str], fallback: str) -> str:
    date_part = parse_iso(created_at).astimezone(timezone.utc).strftime("%Y-%m-%d")
    return f"{date_part}-{kind}-{slugify(title or fallback)}-{short_id(id_)}.json"


def build_node_filename(created_at: str, id_: str, title: Optional[str] = None) -> str:
    """``YYYY-MM-DD-node-<slug>-<shortId>.json``"""
    return _dated_filename("node", created_at, id_, title, "node")


def build_conversation_filename(created_at: str, id_: str, title: Optional[str] = None) -> str:
    """``YYYY-MM-DD-convo-<slug>-<shortId>.json``"""
    return _dated_filename("convo", created_at, id_, title, "conversation")


def build_document_filename(created_at: str, id_: str, title: Optional[str] = None) -> str:
    """``YYYY-MM-DD-doc-<slug>-<shortId>.json``"""
    return _dated_filename("doc", created_at, id_, title, "document")
