import pytest
from typing import Dict, List, Optional, Sequence

from knowledge_index.core.utils import now_iso
from knowledge_index.embeddings.index import VectorIndexCache
from knowledge_index.embeddings.models import EmbeddingMeta, EmbeddingRecord, SourceType
from knowledge_index.embeddings.store import VectorRecordStore
from knowledge_index.storage.blob_store import InMemoryBlobStore


class FakeEmbedder:
    """
    Deterministic stand-in for RetryingBatchEmbedder.

    Texts found in ``vectors`` map to their vector, everything else to
    ``default``. Setting ``error`` makes every call raise it.
    """

    model = "test-embedding-model"

    def __init__(
        self,
        vectors: Optional[Dict[str, List[float]]] = None,
        default: Optional[List[float]] = None,
    ):
        self.vectors = dict(vectors or {})
        self.default = default or [1.0, 0.0, 0.0]
        self.error: Optional[Exception] = None
        self.calls: List[List[str]] = []

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [list(self.vectors.get(t.strip(), self.default)) for t in texts]

    async def embed_one(self, text: str) -> List[float]:
        [vector] = await self.embed_many([text])
        return vector


def make_record(
    id: str,
    vector: List[float],
    source_type: SourceType = SourceType.KNOWLEDGE_NODE,
    source_id: Optional[str] = None,
    source_ref: Optional[str] = None,
) -> EmbeddingRecord:
    return EmbeddingRecord(
        id=id,
        source_type=source_type,
        source_id=source_id or f"src-{id}",
        vector=vector,
        created_at=now_iso(),
        meta=EmbeddingMeta(model="test-embedding-model", source_ref=source_ref),
    )


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def index(blob_store):
    return VectorIndexCache(VectorRecordStore(blob_store))
