"""
Document Ingestion

Ingests a plain-text document into the index:

1. Clamp the text to ``max_chars``.
2. Save a SourceDocument record.
3. Split the text into chunks.
4. Embed all chunks with one ``embed_many`` call (batched internally).
5. In ONE index write, drop the document's previous chunks and append the new
   ``documentChunk`` records.
6. Optionally create a ``summary`` KnowledgeNode pointing at the document.

Re-ingesting with the same ``document_id`` therefore replaces its chunks.
Steps 4 to 6 only degrade the result when they fail.
"""

from __future__ import annotations

import logging
from typing import List, Literal, Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter
from pydantic import BaseModel

from ..config import settings
from ..core.errors import KnowledgeIndexError, ValidationError
from ..core.utils import build_document_filename, generate_id, now_iso
from ..embeddings.embedder import TextEmbedder
from ..embeddings.index import VectorIndexCache
from ..embeddings.models import EmbeddingMeta, EmbeddingRecord, KnowledgeNodeType, SourceType
from ..storage.blob_store import BlobStore
from .models import (
    DOCUMENTS_PREFIX,
    KnowledgeNode,
    NodeSourceType,
    SourceDocument,
    SourceDocumentMeta,
)
from .nodes import NodeService
from .summaries import SummaryStatus, summarize_document

logger = logging.getLogger("kindex.documents")

CHUNK_ID_SEPARATOR = "#"


class IngestDocumentResult(BaseModel):
    status: Literal["ok", "degraded"]
    document: SourceDocument
    filename: str
    chunk_count: int
    index_status: Literal["embedded", "skipped", "error"]
    summary_status: SummaryStatus
    summary_node: Optional[KnowledgeNode] = None
    warnings: List[str] = []


def chunk_source_id(document_id: str, chunk_index: int) -> str:
    return f"{document_id}{CHUNK_ID_SEPARATOR}{chunk_index}"


def is_chunk_of(record: EmbeddingRecord, document_id: str) -> bool:
    return record.source_type == SourceType.DOCUMENT_CHUNK and record.source_id.startswith(
        f"{document_id}{CHUNK_ID_SEPARATOR}"
    )


class DocumentService:
    def __init__(
        self,
        blob_store: BlobStore,
        index: VectorIndexCache,
        embedder: TextEmbedder,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        max_chars: Optional[int] = None,
        nodes: Optional[NodeService] = None,
    ) -> None:
        self._blobs = blob_store
        self._index = index
        self._embedder = embedder
        self._nodes = nodes or NodeService(blob_store, index, embedder)
        self._max_chars = max_chars or settings.document_max_chars
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size or settings.chunk_size,
            chunk_overlap=chunk_overlap if chunk_overlap is not None else settings.chunk_overlap,
            length_function=len,
            separators=["\n\n", "\n", ".", " ", ""],
        )

    def split(self, text: str) -> List[str]:
        return [c for c in (chunk.strip() for chunk in self._splitter.split_text(text)) if c]

    async def ingest_document(
        self,
        title: str,
        text: str,
        document_id: Optional[str] = None,
        create_summary_node: bool = True,
        summary_override: Optional[str] = None,
    ) -> IngestDocumentResult:
        text = (text or "").strip()
        title = (title or "").strip()
        if not text:
            raise ValidationError("ingest_document: text must be a non-empty string.")
        if not title:
            raise ValidationError("ingest_document: title must be a non-empty string.")

        warnings: List[str] = []
        original_len = len(text)
        truncated = original_len > self._max_chars
        if truncated:
            warnings.append(
                f"Document text truncated from {original_len} to {self._max_chars} chars (max_chars)."
            )
            text = text[: self._max_chars]

        chunks = self.split(text)
        document_id = document_id or generate_id()
        created_at = now_iso()

        document = SourceDocument(
            id=document_id,
            title=title,
            created_at=created_at,
            updated_at=created_at,
            meta=SourceDocumentMeta(
                size_chars=len(text),
                chunk_count=len(chunks),
                truncated=truncated,
            ),
        )
        filename = build_document_filename(created_at, document_id, title)
        await self._blobs.save_json(f"{DOCUMENTS_PREFIX}{filename}", document.to_json())

        logger.info(
            "Ingesting document: id=%s chunks=%d filename=%s",
            document_id,
            len(chunks),
            filename,
        )

        degraded = False
        index_status = "embedded" if chunks else "skipped"
        try:
            await self._index_chunks(document_id, chunks, filename)
        except KnowledgeIndexError as exc:
            logger.warning("Indexing failed for document %s: %s", document_id, exc)
            warnings.append(f"Chunk embedding/indexing failed: {exc}")
            index_status = "error"
            degraded = True

        summary_status: SummaryStatus = "skipped"
        summary_node: Optional[KnowledgeNode] = None
        if create_summary_node:
            try:
                created = await self._nodes.create_node(
                    content=summary_override or summarize_document(text),
                    title=title,
                    type=KnowledgeNodeType.SUMMARY,
                    source_type=NodeSourceType.DOCUMENT,
                    source_ref=filename,
                )
            except KnowledgeIndexError as exc:
                logger.warning("Summary node creation failed for document %s: %s", document_id, exc)
                warnings.append(f"Summary node creation/indexing failed: {exc}")
                summary_status = "error"
                degraded = True
            else:
                summary_status = "created"
                summary_node = created.node
                if created.embedding_status == "error":
                    warnings.append(f"Summary node indexing failed: {created.embedding_error}")
                    degraded = True

        return IngestDocumentResult(
            status="degraded" if degraded else "ok",
            document=document,
            filename=filename,
            chunk_count=len(chunks),
            index_status=index_status,
            summary_status=summary_status,
            summary_node=summary_node,
            warnings=warnings,
        )

    async def _index_chunks(self, document_id: str, chunks: List[str], filename: str) -> None:
        new_records: List[EmbeddingRecord] = []

        if chunks:
            vectors = await self._embedder.embed_many(chunks)
            created_at = now_iso()
            new_records = [
                EmbeddingRecord(
                    id=generate_id(),
                    source_type=SourceType.DOCUMENT_CHUNK,
                    source_id=chunk_source_id(document_id, i),
                    vector=vector,
                    created_at=created_at,
                    meta=EmbeddingMeta(model=self._embedder.model, source_ref=filename),
                )
                for i, vector in enumerate(vectors)
            ]

        def _replace_chunks(current: List[EmbeddingRecord]) -> List[EmbeddingRecord]:
            kept = [r for r in current if not is_chunk_of(r, document_id)]
            return kept + new_records

        await self._index.update(_replace_chunks)
