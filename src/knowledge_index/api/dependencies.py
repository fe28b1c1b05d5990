from fastapi import Depends, Request

from ..embeddings.index import VectorIndexCache
from ..knowledge.conversations import ConversationService
from ..knowledge.documents import DocumentService
from ..knowledge.nodes import NodeService
from ..knowledge.retrieval import RetrievalService
from ..core.health import HealthCheck
from ..services import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_index(container: ServiceContainer = Depends(get_container)) -> VectorIndexCache:
    return container.index


def get_node_service(container: ServiceContainer = Depends(get_container)) -> NodeService:
    return container.nodes


def get_conversation_service(
    container: ServiceContainer = Depends(get_container),
) -> ConversationService:
    return container.conversations


def get_document_service(container: ServiceContainer = Depends(get_container)) -> DocumentService:
    return container.documents


def get_retrieval_service(container: ServiceContainer = Depends(get_container)) -> RetrievalService:
    return container.retrieval


def get_health_check(container: ServiceContainer = Depends(get_container)) -> HealthCheck:
    return container.health
