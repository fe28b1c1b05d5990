"""
Service Container

Owns every long-lived object of the service: the blob store, the embedder,
the vector index cache and the knowledge services built on them. One
container is constructed at startup and handed to every request path.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import settings
from .core.health import HealthCheck
from .embeddings.embedder import RetryingBatchEmbedder, TextEmbedder
from .embeddings.index import VectorIndexCache
from .embeddings.store import VectorRecordStore
from .knowledge.conversations import ConversationService
from .knowledge.documents import DocumentService
from .knowledge.nodes import NodeService
from .knowledge.retrieval import RetrievalService
from .storage.blob_store import BlobStore, FileBlobStore


@dataclass(frozen=True)
class ServiceContainer:
    blob_store: BlobStore
    embedder: TextEmbedder
    index: VectorIndexCache
    nodes: NodeService
    conversations: ConversationService
    documents: DocumentService
    retrieval: RetrievalService
    health: HealthCheck


def build_container(
    blob_store: Optional[BlobStore] = None,
    embedder: Optional[TextEmbedder] = None,
    check_provider: Optional[bool] = None,
) -> ServiceContainer:
    """
    Wire the service graph. Every collaborator can be overridden, which is
    how tests swap in an in-memory store and a stub embedder.
    """
    blob_store = blob_store or FileBlobStore()
    embedder = embedder or RetryingBatchEmbedder()
    index = VectorIndexCache(VectorRecordStore(blob_store))
    nodes = NodeService(blob_store, index, embedder)

    if check_provider is None:
        check_provider = settings.enable_provider_health_check

    return ServiceContainer(
        blob_store=blob_store,
        embedder=embedder,
        index=index,
        nodes=nodes,
        conversations=ConversationService(blob_store, index, embedder, nodes=nodes),
        documents=DocumentService(blob_store, index, embedder, nodes=nodes),
        retrieval=RetrievalService(index, embedder, nodes),
        health=HealthCheck(blob_store, index, embedder, check_provider=check_provider),
    )
