"""
System Health Probe

Checks the blob store, the vector index and the embedding provider, and
aggregates them into one status.

Dependencies are the ``BlobStore``, ``IndexReader`` and ``TextEmbedder``
interfaces.

Aggregation
-----------
- ``error``     store or index is ``error``
- ``degraded``  index is ``empty`` or provider is ``error``
- ``ok``        otherwise
"""

from __future__ import annotations

import logging
from typing import List, Literal, Protocol

from pydantic import BaseModel

from ..core.errors import KnowledgeIndexError
from ..core.utils import now_iso
from ..embeddings.embedder import TextEmbedder
from ..embeddings.models import EmbeddingRecord
from ..storage.blob_store import BlobStore

logger = logging.getLogger("kindex.health")

ComponentStatus = Literal["ok", "error", "degraded"]
IndexStatus = Literal["ok", "empty", "error"]
OverallStatus = Literal["ok", "degraded", "error"]

HEALTH_PROBE_TEXT = "knowledge-index health-check"


class IndexReader(Protocol):
    async def load(self) -> List[EmbeddingRecord]: ...


class HealthDetails(BaseModel):
    config: ComponentStatus = "ok"
    store: ComponentStatus = "error"
    index: IndexStatus = "error"
    provider: ComponentStatus = "error"


class HealthReport(BaseModel):
    status: OverallStatus
    timestamp: str
    model: str
    details: HealthDetails

    @property
    def http_status(self) -> int:
        return 500 if self.status == "error" else 200


def determine_overall_status(details: HealthDetails) -> OverallStatus:
    if "error" in (details.config, details.store, details.index):
        return "error"
    if details.index == "empty" or details.provider == "error":
        return "degraded"
    return "ok"


class HealthCheck:
    def __init__(
        self,
        blob_store: BlobStore,
        index: IndexReader,
        embedder: TextEmbedder,
        check_provider: bool = True,
    ) -> None:
        self._blobs = blob_store
        self._index = index
        self._embedder = embedder
        self._check_provider = check_provider

    async def check_store(self) -> ComponentStatus:
        try:
            return "ok" if await self._blobs.ping() else "error"
        except KnowledgeIndexError as exc:
            logger.warning("Store check failed: %s", exc)
            return "error"

    async def check_index(self) -> IndexStatus:
        try:
            records = await self._index.load()
        except KnowledgeIndexError as exc:
            logger.warning("Index check failed: %s", exc)
            return "error"
        return "ok" if records else "empty"

    async def check_provider(self) -> ComponentStatus:
        if not self._check_provider:
            return "ok"

        try:
            vector = await self._embedder.embed_one(HEALTH_PROBE_TEXT)
        except KnowledgeIndexError as exc:
            logger.warning("Provider check failed: %s", exc)
            return "error"

        logger.debug("Provider check: vector length=%d", len(vector))
        return "ok"

    async def run(self) -> HealthReport:
        # Run in order: the index check may initialize the store.
        details = HealthDetails(
            config="ok",
            store=await self.check_store(),
            index=await self.check_index(),
            provider=await self.check_provider(),
        )
        report = HealthReport(
            status=determine_overall_status(details),
            timestamp=now_iso(),
            model=self._embedder.model,
            details=details,
        )
        logger.info("Health summary: status=%s details=%s", report.status, details.model_dump())
        return report
