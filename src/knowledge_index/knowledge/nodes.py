"""
Knowledge Node Service

Creates knowledge nodes and indexes them.

Workflow
--------
1. Build and validate a KnowledgeNode.
2. Persist the node JSON to the blob store (must succeed).
3. Embed the node content and upsert a ``knowledgeNode`` EmbeddingRecord.

A failure in step 3 does not fail the call: the node is already stored, so
the result reports ``embedding_status="error"`` and the caller decides whether
that degraded state is acceptable.
"""

from __future__ import annotations

import logging
from typing import List, Literal, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import KnowledgeIndexError, ValidationError
from ..core.utils import build_node_filename, generate_id, now_iso
from ..embeddings.embedder import TextEmbedder
from ..embeddings.index import VectorIndexCache
from ..embeddings.models import (
    EMBEDDING_RECORD_SCHEMA_VERSION,
    EmbeddingMeta,
    EmbeddingRecord,
    KnowledgeNodeType,
    SourceType,
)
from ..storage.blob_store import BlobStore
from .models import KNOWLEDGE_NODES_PREFIX, KnowledgeNode, NodeSourceType

logger = logging.getLogger("kindex.nodes")

TITLE_FROM_CONTENT_CHARS = 80

EmbeddingStatus = Literal["embedded", "skipped", "error"]


class CreateNodeResult(BaseModel):
    node: KnowledgeNode
    filename: str
    embedding_status: EmbeddingStatus
    embedding_id: Optional[str] = None
    embedding_error: Optional[str] = None


class NodeService:
    def __init__(
        self,
        blob_store: BlobStore,
        index: VectorIndexCache,
        embedder: TextEmbedder,
    ) -> None:
        self._blobs = blob_store
        self._index = index
        self._embedder = embedder

    @staticmethod
    def node_key(filename: str) -> str:
        return f"{KNOWLEDGE_NODES_PREFIX}{filename}"

    async def read_node(self, filename: str) -> Optional[KnowledgeNode]:
        """
        Load a node by file name. ``None`` when absent.

        Raises pydantic's ValidationError when the stored JSON is not a node.
        """
        raw = await self._blobs.read_json(self.node_key(filename))
        if raw is None:
            return None
        return KnowledgeNode.model_validate(raw)

    async def create_node(
        self,
        content: str,
        title: Optional[str] = None,
        type: Optional[KnowledgeNodeType] = None,
        source_type: Optional[NodeSourceType] = None,
        source_ref: Optional[str] = None,
        tags: Optional[List[str]] = None,
        domains: Optional[List[str]] = None,
    ) -> CreateNodeResult:
        content = (content or "").strip()
        if not content:
            raise ValidationError("create_node: content must be a non-empty string.")

        now = now_iso()
        node_id = generate_id()
        title = (title or "").strip() or content[:TITLE_FROM_CONTENT_CHARS].strip()

        try:
            node = KnowledgeNode(
                id=node_id,
                type=type or KnowledgeNodeType.NOTE,
                title=title,
                content=content,
                source_type=source_type or NodeSourceType.MANUAL,
                source_ref=source_ref or None,
                created_at=now,
                updated_at=now,
                tags=tags or None,
                domains=domains or None,
            )
        except PydanticValidationError as exc:
            raise ValidationError(f"create_node: invalid knowledge node: {exc}") from exc

        filename = build_node_filename(node.created_at, node.id, node.title)

        logger.info(
            "Creating knowledge node: id=%s type=%s sourceType=%s filename=%s",
            node.id,
            node.type.value,
            node.source_type.value,
            filename,
        )

        await self._blobs.save_json(self.node_key(filename), node.to_json())

        try:
            record = await self._index_node(node, filename)
        except KnowledgeIndexError as exc:
            logger.warning(
                "Embedding/indexing failed for node %s: %s", node.id, exc
            )
            return CreateNodeResult(
                node=node,
                filename=filename,
                embedding_status="error",
                embedding_error=str(exc),
            )

        return CreateNodeResult(
            node=node,
            filename=filename,
            embedding_status="embedded",
            embedding_id=record.id,
        )

    async def _index_node(self, node: KnowledgeNode, filename: str) -> EmbeddingRecord:
        vector = await self._embedder.embed_one(node.content)

        record = EmbeddingRecord(
            id=generate_id(),
            schema_version=EMBEDDING_RECORD_SCHEMA_VERSION,
            source_type=SourceType.KNOWLEDGE_NODE,
            source_id=node.id,
            vector=vector,
            created_at=now_iso(),
            meta=EmbeddingMeta(
                model=self._embedder.model,
                node_type=node.type,
                source_ref=filename,
            ),
        )
        await self._index.upsert(record)

        logger.info(
            "Embedded + indexed knowledge node: nodeId=%s embeddingId=%s vectorLength=%d",
            node.id,
            record.id,
            len(vector),
        )
        return record
