"""
Conversation Log Service

Stores a conversation session, indexes its transcript as one
``conversationLog`` record and optionally creates a ``summary`` KnowledgeNode
linked back through ``meta.summaryNodeId``. Saving the log is the primary
invariant; a failed embed, index or summary step only degrades the result.
"""

from __future__ import annotations

import logging
from typing import List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..config import settings
from ..core.errors import KnowledgeIndexError, ValidationError
from ..core.utils import build_conversation_filename, generate_id, now_iso
from ..embeddings.embedder import TextEmbedder
from ..embeddings.index import VectorIndexCache
from ..embeddings.models import EmbeddingMeta, EmbeddingRecord, KnowledgeNodeType, SourceType
from ..storage.blob_store import BlobStore
from .models import (
    CONVERSATION_LOGS_PREFIX,
    ConversationLog,
    ConversationMessage,
    ConversationMeta,
    KnowledgeNode,
    NodeSourceType,
)
from .nodes import NodeService
from .summaries import CONVERSATION_SUMMARY_TAG, SummaryStatus, summarize_conversation

logger = logging.getLogger("kindex.conversations")


class LogConversationResult(BaseModel):
    log: ConversationLog
    filename: str
    embedding_status: Literal["embedded", "error"]
    embedding_error: Optional[str] = None
    summary_status: SummaryStatus
    summary_node: Optional[KnowledgeNode] = None
    summary_error: Optional[str] = None


def build_transcript(messages: Sequence[ConversationMessage], max_chars: int) -> str:
    """``role: content`` lines, clamped to ``max_chars``."""
    transcript = "\n".join(f"{m.role.value}: {m.content}" for m in messages)
    return transcript[:max_chars]


class ConversationService:
    def __init__(
        self,
        blob_store: BlobStore,
        index: VectorIndexCache,
        embedder: TextEmbedder,
        transcript_max_chars: Optional[int] = None,
        nodes: Optional[NodeService] = None,
    ) -> None:
        self._blobs = blob_store
        self._index = index
        self._embedder = embedder
        self._nodes = nodes or NodeService(blob_store, index, embedder)
        self._max_chars = transcript_max_chars or settings.transcript_max_chars

    async def log_conversation(
        self,
        session_id: str,
        messages: Sequence[Tuple[str, str, Optional[str]]],
        title: Optional[str] = None,
        model: Optional[str] = None,
        tags: Optional[List[str]] = None,
        create_summary_node: bool = True,
        summary_override: Optional[str] = None,
    ) -> LogConversationResult:
        """
        Parameters
        ----------
        session_id : str
            Caller's session identifier.
        messages : Sequence[Tuple[str, str, Optional[str]]]
            ``(role, content, timestamp)`` triples; a missing timestamp
            defaults to the log creation time.
        create_summary_node : bool
            Create a ``summary`` node for the conversation.
        summary_override : Optional[str]
            Summary text to use instead of the deterministic digest.
        """
        created_at = now_iso()

        try:
            normalized = [
                ConversationMessage(
                    id=generate_id(),
                    role=role,
                    content=(content or "").strip(),
                    timestamp=timestamp or created_at,
                )
                for role, content, timestamp in messages
            ]
            log = ConversationLog(
                id=generate_id(),
                title=(title or "").strip() or None,
                session_id=session_id,
                created_at=created_at,
                updated_at=created_at,
                messages=normalized,
                meta=ConversationMeta(model=model, tags=tags or None) if (model or tags) else None,
            )
        except PydanticValidationError as exc:
            raise ValidationError(f"log_conversation: invalid conversation: {exc}") from exc

        filename = build_conversation_filename(
            log.created_at, log.id, log.title or f"Session {log.session_id}"
        )

        logger.info(
            "Saving ConversationLog: id=%s sessionId=%s messages=%d filename=%s",
            log.id,
            log.session_id,
            len(log.messages),
            filename,
        )
        await self._blobs.save_json(f"{CONVERSATION_LOGS_PREFIX}{filename}", log.to_json())

        embedding_status = "embedded"
        embedding_error: Optional[str] = None
        try:
            vector = await self._embedder.embed_one(build_transcript(log.messages, self._max_chars))
            await self._index.upsert(
                EmbeddingRecord(
                    id=generate_id(),
                    source_type=SourceType.CONVERSATION_LOG,
                    source_id=log.id,
                    vector=vector,
                    created_at=now_iso(),
                    meta=EmbeddingMeta(model=self._embedder.model, source_ref=filename),
                )
            )
        except KnowledgeIndexError as exc:
            logger.warning("Indexing failed for conversation %s: %s", log.id, exc)
            embedding_status = "error"
            embedding_error = str(exc)

        if not create_summary_node:
            return LogConversationResult(
                log=log,
                filename=filename,
                embedding_status=embedding_status,
                embedding_error=embedding_error,
                summary_status="skipped",
            )

        summary_node: Optional[KnowledgeNode] = None
        summary_error: Optional[str] = None
        try:
            created = await self._nodes.create_node(
                content=summary_override or summarize_conversation(log.messages),
                title=log.title or f"Summary of session {log.session_id}",
                type=KnowledgeNodeType.SUMMARY,
                source_type=NodeSourceType.CONVERSATION,
                source_ref=filename,
                tags=[CONVERSATION_SUMMARY_TAG],
            )
            summary_node = created.node
            if created.embedding_status == "error":
                summary_error = f"Summary node indexing failed: {created.embedding_error}"

            log = log.model_copy(
                update={
                    "meta": (log.meta or ConversationMeta()).model_copy(
                        update={"summary_node_id": summary_node.id}
                    ),
                    "updated_at": now_iso(),
                }
            )
            await self._blobs.save_json(f"{CONVERSATION_LOGS_PREFIX}{filename}", log.to_json())
        except KnowledgeIndexError as exc:
            logger.warning("Summary creation failed for conversation %s: %s", log.id, exc)
            return LogConversationResult(
                log=log,
                filename=filename,
                embedding_status=embedding_status,
                embedding_error=embedding_error,
                summary_status="error",
                summary_node=summary_node,
                summary_error=str(exc),
            )

        logger.info(
            "Summary node created: nodeId=%s convoId=%s", summary_node.id, log.id
        )
        return LogConversationResult(
            log=log,
            filename=filename,
            embedding_status=embedding_status,
            embedding_error=embedding_error,
            summary_status="created",
            summary_node=summary_node,
            summary_error=summary_error,
        )
