"""
API Models

Pydantic request models for the HTTP surface. Response bodies reuse the
result models of the knowledge services.

Design Goals
------------
- Strong typing
- Safe defaults (no shared mutable state)
- Unknown fields rejected
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..embeddings.models import KnowledgeNodeType
from ..knowledge.models import ConversationRole, NodeSourceType


# ---------------------------------------------------------------------
# Knowledge Nodes
# ---------------------------------------------------------------------

class CreateNodeRequest(BaseModel):
    content: str = Field(..., min_length=1)
    title: Optional[str] = Field(default=None, min_length=1)
    type: Optional[KnowledgeNodeType] = None
    source_type: Optional[NodeSourceType] = None
    source_ref: Optional[str] = Field(default=None, min_length=1)
    tags: Optional[List[str]] = None
    domains: Optional[List[str]] = None

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------

class ConversationMessageIn(BaseModel):
    role: ConversationRole
    content: str = Field(..., min_length=1)
    timestamp: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class LogConversationRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    title: Optional[str] = Field(default=None, min_length=1)
    messages: List[ConversationMessageIn] = Field(..., min_length=1)
    model: Optional[str] = None
    tags: Optional[List[str]] = None
    create_summary_node: bool = True
    summary_override: Optional[str] = Field(default=None, min_length=1)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------

class IngestDocumentRequest(BaseModel):
    title: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    document_id: Optional[str] = Field(
        default=None,
        min_length=1,
        pattern=r"^[A-Za-z0-9_-]{1,64}$",
        description="Reuse an id to replace a previously ingested document's chunks.",
    )
    create_summary_node: bool = True
    summary_override: Optional[str] = Field(default=None, min_length=1)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------

class RetrieveRequest(BaseModel):
    query: str = Field(..., min_length=1)
    top_k: Optional[int] = Field(default=None, ge=1, le=20)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------

class IndexStatsResponse(BaseModel):
    schema_version: int
    created_at: str
    updated_at: str
    total_records: int
    dimension: int
    records_by_source_type: Dict[str, int]
