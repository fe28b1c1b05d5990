"""
Embedding Data Models

This module defines the canonical data model of the vector index:

- EmbeddingRecord    one source unit mapped to one vector (persisted)
- VectorIndexFile    the whole index document (persisted)
- CachedEmbedding    a validated record plus its precomputed norm (memory only)
- SearchHit          a ranked search result

Persisted models use camelCase aliases so that the JSON document keeps the
format shared with existing index files:

    {
      "schemaVersion": 1,
      "createdAt": "...",
      "updatedAt": "...",
      "records": [ { "id": ..., "sourceType": ..., "vector": [...], ... } ]
    }
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..core.utils import parse_iso


EMBEDDING_RECORD_SCHEMA_VERSION = 1
INDEX_FILE_SCHEMA_VERSION = 1


class SourceType(str, Enum):
    """What produced the text behind a record."""

    KNOWLEDGE_NODE = "knowledgeNode"
    CONVERSATION_LOG = "conversationLog"
    DOCUMENT_CHUNK = "documentChunk"


class KnowledgeNodeType(str, Enum):
    NOTE = "note"
    SUMMARY = "summary"
    PRINCIPLE = "principle"
    SPEC = "spec"
    LOG = "log"
    OTHER = "other"


def _check_iso(value: str) -> str:
    try:
        parse_iso(value)
    except ValueError as exc:
        raise ValueError(f"expected ISO 8601 datetime string, got {value!r}") from exc
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class EmbeddingMeta(_CamelModel):
    """
    Auxiliary data carried with a record. Opaque to the index itself.
    """

    model: Optional[str] = Field(default=None, min_length=1)
    node_type: Optional[KnowledgeNodeType] = None
    source_ref: Optional[str] = Field(
        default=None,
        min_length=1,
        description="Blob store file name of the entity backing the source text.",
    )


class EmbeddingRecord(_CamelModel):
    """
    A single vector index entry.

    Identity is ``id``; ``(source_type, source_id)`` is an alternate identity
    key. Both must be unique within one index.
    """

    id: str = Field(..., min_length=1)
    schema_version: int = Field(default=EMBEDDING_RECORD_SCHEMA_VERSION, ge=0)
    source_type: SourceType
    source_id: str = Field(..., min_length=1)
    vector: List[float] = Field(..., min_length=1)
    created_at: str
    meta: Optional[EmbeddingMeta] = None

    @field_validator("vector", mode="before")
    @classmethod
    def _vector_must_be_finite_numbers(cls, v: Any) -> Any:
        if not isinstance(v, (list, tuple)):
            raise ValueError("vector must be a sequence of numbers")

        values = []
        for i, x in enumerate(v):
            if isinstance(x, bool) or not isinstance(x, (int, float)):
                raise ValueError(f"vector[{i}] is not a number")
            try:
                fx = float(x)
            except OverflowError:
                raise ValueError(f"vector[{i}] is out of float range") from None
            if not math.isfinite(fx):
                raise ValueError(f"vector[{i}] is not finite")
            values.append(fx)

        return values

    @field_validator("created_at")
    @classmethod
    def _created_at_is_iso(cls, v: str) -> str:
        return _check_iso(v)

    @property
    def identity_key(self) -> tuple[SourceType, str]:
        return (self.source_type, self.source_id)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class VectorIndexFile(_CamelModel):
    """The whole index document as stored under one blob store key."""

    schema_version: int = Field(default=INDEX_FILE_SCHEMA_VERSION, ge=1)
    created_at: str
    updated_at: str
    records: List[EmbeddingRecord] = Field(default_factory=list)

    def to_json(self) -> dict:
        return {
            "schemaVersion": self.schema_version,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "records": [r.to_json() for r in self.records],
        }


class IndexFileShape(_CamelModel):
    """
    Outer shape of the index document. ``records`` is left untyped so each
    entry can be validated on its own.
    """

    schema_version: int = Field(..., ge=1)
    created_at: str
    updated_at: str
    records: List[Any]


# ---------------------------------------------------------------------
# In-memory types
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class CachedEmbedding:
    record: EmbeddingRecord
    norm: float


@dataclass(frozen=True)
class SearchHit:
    record: EmbeddingRecord
    score: float
