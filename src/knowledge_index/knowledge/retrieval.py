"""
Knowledge Retrieval

Embeds a query, ranks the index by cosine similarity and hydrates
``knowledgeNode`` hits with the stored node (located through
``meta.source_ref``). Vectors are never returned.

Degraded modes
--------------
- Query embedding fails: ``status="degraded"``, no results, one warning.
- A node cannot be hydrated: the hit is still returned without ``node`` and a
  warning is added; the response is ``degraded``.
"""

from __future__ import annotations

import logging
import time
from typing import List, Literal, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import BlobStoreError, ProviderError
from ..core.utils import now_iso
from ..embeddings.embedder import TextEmbedder
from ..embeddings.index import VectorIndexCache
from ..embeddings.models import SearchHit, SourceType
from .models import KnowledgeNode
from .nodes import NodeService

logger = logging.getLogger("kindex.retrieval")

DEFAULT_TOP_K = 5
MAX_TOP_K = 20


def normalize_top_k(top_k: Optional[int]) -> int:
    value = DEFAULT_TOP_K if top_k is None else int(top_k)
    return max(1, min(MAX_TOP_K, value))


class RetrievedItem(BaseModel):
    score: float
    source_type: SourceType
    source_id: str
    source_ref: Optional[str] = None
    node: Optional[KnowledgeNode] = None


class RetrievalResponse(BaseModel):
    status: Literal["ok", "degraded"]
    timestamp: str
    query: str
    top_k: int
    results: List[RetrievedItem] = []
    warnings: List[str] = []


class RetrievalService:
    def __init__(
        self,
        index: VectorIndexCache,
        embedder: TextEmbedder,
        nodes: NodeService,
    ) -> None:
        self._index = index
        self._embedder = embedder
        self._nodes = nodes

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> RetrievalResponse:
        started = time.monotonic()
        query = (query or "").strip()
        top_k = normalize_top_k(top_k)
        warnings: List[str] = []

        logger.info(
            "retrieve: queryLen=%d topK=%d model=%s",
            len(query),
            top_k,
            self._embedder.model,
        )

        try:
            query_vector = await self._embedder.embed_one(query)
        except ProviderError as exc:
            warnings.append(f"Query embedding failed; returning empty results. Error: {exc}")
            logger.warning("retrieve: degraded, embedding failed: %s", exc)
            return RetrievalResponse(
                status="degraded",
                timestamp=now_iso(),
                query=query,
                top_k=top_k,
                warnings=warnings,
            )

        hits = await self._index.search(query_vector, top_k)

        results = []
        for hit in hits:
            item, warning = await self._to_item(hit)
            results.append(item)
            if warning:
                warnings.append(warning)

        status = "degraded" if warnings else "ok"
        logger.info(
            "retrieve: status=%s results=%d warnings=%d durationMs=%d",
            status,
            len(results),
            len(warnings),
            int((time.monotonic() - started) * 1000),
        )

        return RetrievalResponse(
            status=status,
            timestamp=now_iso(),
            query=query,
            top_k=top_k,
            results=results,
            warnings=warnings,
        )

    async def _to_item(self, hit: SearchHit) -> tuple[RetrievedItem, Optional[str]]:
        record = hit.record
        source_ref = record.meta.source_ref if record.meta else None
        item = RetrievedItem(
            score=hit.score,
            source_type=record.source_type,
            source_id=record.source_id,
            source_ref=source_ref,
        )

        if record.source_type != SourceType.KNOWLEDGE_NODE:
            return item, None

        if not source_ref:
            return item, (
                f"Missing meta.sourceRef for knowledgeNode sourceId={record.source_id}. "
                "Hydration skipped."
            )

        try:
            node = await self._nodes.read_node(source_ref)
        except PydanticValidationError:
            return item, f"Failed to validate KnowledgeNode JSON for filename={source_ref}."
        except BlobStoreError as exc:
            return item, f"Failed to read KnowledgeNode filename={source_ref}: {exc}"

        if node is None:
            return item, f"KnowledgeNode file not found: filename={source_ref}."

        return item.model_copy(update={"node": node}), None
