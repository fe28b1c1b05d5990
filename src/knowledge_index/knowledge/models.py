"""
Knowledge Entity Models

Persisted entities whose text feeds the vector index:

- KnowledgeNode     a structured chunk of knowledge
- ConversationLog   a full conversation session
- SourceDocument    metadata of an ingested plain-text document

All are stored as JSON in the blob store with camelCase keys, one file per
entity, under a folder per entity kind.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..core.utils import parse_iso
from ..embeddings.models import KnowledgeNodeType

KNOWLEDGE_NODE_SCHEMA_VERSION = 1
CONVERSATION_LOG_SCHEMA_VERSION = 1
SOURCE_DOCUMENT_SCHEMA_VERSION = 1

# Blob store folders
KNOWLEDGE_NODES_PREFIX = "knowledge_nodes/"
CONVERSATION_LOGS_PREFIX = "conversation_logs/"
DOCUMENTS_PREFIX = "documents/"


class NodeSourceType(str, Enum):
    MANUAL = "manual"
    CONVERSATION = "conversation"
    DOCUMENT = "document"
    SYSTEM = "system"
    OTHER = "other"


class ConversationRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class _Persisted(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    @field_validator("created_at", "updated_at", "timestamp", check_fields=False)
    @classmethod
    def _iso_timestamp(cls, v: str) -> str:
        parse_iso(v)
        return v

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class KnowledgeNode(_Persisted):
    id: str = Field(..., min_length=1)
    schema_version: int = Field(default=KNOWLEDGE_NODE_SCHEMA_VERSION, ge=0)
    type: KnowledgeNodeType = KnowledgeNodeType.NOTE
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    source_type: NodeSourceType = NodeSourceType.MANUAL
    source_ref: Optional[str] = Field(default=None, min_length=1)
    created_at: str
    updated_at: str
    tags: Optional[List[str]] = None
    domains: Optional[List[str]] = None
    embedding_ref: Optional[str] = Field(default=None, min_length=1)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v


class ConversationMessage(_Persisted):
    id: str = Field(..., min_length=1)
    role: ConversationRole
    content: str = Field(..., min_length=1)
    timestamp: str


class ConversationMeta(_Persisted):
    model: Optional[str] = Field(default=None, min_length=1)
    tags: Optional[List[str]] = None
    summary_node_id: Optional[str] = Field(default=None, min_length=1)


class ConversationLog(_Persisted):
    id: str = Field(..., min_length=1)
    schema_version: int = Field(default=CONVERSATION_LOG_SCHEMA_VERSION, ge=0)
    title: Optional[str] = Field(default=None, min_length=1)
    session_id: str = Field(..., min_length=1)
    created_at: str
    updated_at: str
    messages: List[ConversationMessage] = Field(..., min_length=1)
    meta: Optional[ConversationMeta] = None


class SourceDocumentMeta(_Persisted):
    size_chars: int = Field(..., ge=0)
    chunk_count: int = Field(..., ge=0)
    truncated: bool = False


class SourceDocument(_Persisted):
    id: str = Field(..., min_length=1)
    schema_version: int = Field(default=SOURCE_DOCUMENT_SCHEMA_VERSION, ge=0)
    title: str = Field(..., min_length=1)
    mime_type: str = "text/plain"
    created_at: str
    updated_at: str
    meta: SourceDocumentMeta
