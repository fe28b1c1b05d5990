"""
Knowledge Routes

Endpoints that store knowledge and feed the vector index:

- POST /nodes          create a knowledge node and index its content
- POST /conversations  log a conversation, index its transcript and summarize it
- POST /documents      ingest a plain-text document as indexed chunks plus a summary node

Indexing failures do not fail these requests: the entity is stored and the
response reports the degraded indexing status.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from .models import CreateNodeRequest, IngestDocumentRequest, LogConversationRequest
from .dependencies import (
    get_conversation_service,
    get_document_service,
    get_node_service,
)
from .security import require_shared_secret
from ..knowledge.conversations import ConversationService, LogConversationResult
from ..knowledge.documents import DocumentService, IngestDocumentResult
from ..knowledge.nodes import CreateNodeResult, NodeService

router = APIRouter(tags=["knowledge"], dependencies=[Depends(require_shared_secret)])


@router.post(
    "/nodes",
    response_model=CreateNodeResult,
    summary="Create and index a knowledge node",
    status_code=status.HTTP_201_CREATED,
)
async def create_node(
    req: CreateNodeRequest,
    nodes: Annotated[NodeService, Depends(get_node_service)],
) -> CreateNodeResult:
    return await nodes.create_node(
        content=req.content,
        title=req.title,
        type=req.type,
        source_type=req.source_type,
        source_ref=req.source_ref,
        tags=req.tags,
        domains=req.domains,
    )


@router.post(
    "/conversations",
    response_model=LogConversationResult,
    summary="Log and index a conversation",
    status_code=status.HTTP_201_CREATED,
)
async def log_conversation(
    req: LogConversationRequest,
    conversations: Annotated[ConversationService, Depends(get_conversation_service)],
) -> LogConversationResult:
    return await conversations.log_conversation(
        session_id=req.session_id,
        messages=[(m.role.value, m.content, m.timestamp) for m in req.messages],
        title=req.title,
        model=req.model,
        tags=req.tags,
        create_summary_node=req.create_summary_node,
        summary_override=req.summary_override,
    )


@router.post(
    "/documents",
    response_model=IngestDocumentResult,
    summary="Ingest a plain-text document",
    status_code=status.HTTP_201_CREATED,
)
async def ingest_document(
    req: IngestDocumentRequest,
    documents: Annotated[DocumentService, Depends(get_document_service)],
) -> IngestDocumentResult:
    return await documents.ingest_document(
        title=req.title,
        text=req.text,
        document_id=req.document_id,
        create_summary_node=req.create_summary_node,
        summary_override=req.summary_override,
    )
