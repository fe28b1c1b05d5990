"""
Vector Record Store

Reads and writes the entire index as ONE JSON document under a fixed blob
store key. There is no partial patching: every save is a full replace.

Validation is two-level:

1. The outer shape (``schemaVersion``, ``createdAt``, ``updatedAt``,
   ``records`` as a list) must be valid, otherwise the whole file is unusable
   and ``CorruptIndexError`` is raised.
2. Each entry of ``records`` is then validated independently. Entries that
   fail are dropped with a warning; one bad record never invalidates the rest.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.errors import CorruptIndexError
from ..core.utils import now_iso
from ..storage.blob_store import BlobStore
from .models import EmbeddingRecord, IndexFileShape, VectorIndexFile

logger = logging.getLogger("kindex.record_store")

INDEX_KEY = "index/embeddings-metadata.json"


def format_issues(exc: PydanticValidationError) -> str:
    """Render pydantic issues as ``- path: message`` lines."""
    return "\n".join(
        f"- {'.'.join(str(p) for p in err['loc']) or '(root)'}: {err['msg']}"
        for err in exc.errors()
    )


class VectorRecordStore:
    """
    Persistence boundary of the vector index.
    """

    def __init__(self, blob_store: BlobStore, key: str = INDEX_KEY) -> None:
        self._blobs = blob_store
        self._key = key

    async def load(self) -> Optional[VectorIndexFile]:
        """
        Fetch and validate the index document.

        Returns
        -------
        Optional[VectorIndexFile]
            ``None`` when no document exists yet.

        Raises
        ------
        CorruptIndexError
            If the outer document shape is invalid.
        """
        raw = await self._blobs.read_json(self._key)
        if raw is None:
            logger.info("No index document at '%s'; a new index will be initialized.", self._key)
            return None

        try:
            shape = IndexFileShape.model_validate(raw)
        except PydanticValidationError as exc:
            raise CorruptIndexError(
                f"Index document '{self._key}' is invalid. "
                f"Outer shape validation failed with:\n{format_issues(exc)}"
            ) from exc

        records = []
        skipped = 0
        for position, entry in enumerate(shape.records):
            try:
                records.append(EmbeddingRecord.model_validate(entry))
            except PydanticValidationError as exc:
                skipped += 1
                logger.warning(
                    "Skipping malformed EmbeddingRecord at position %d:\n%s",
                    position,
                    format_issues(exc),
                )

        logger.info(
            "Loaded index document: schemaVersion=%d totalRawRecords=%d "
            "validRecords=%d skippedMalformed=%d",
            shape.schema_version,
            len(shape.records),
            len(records),
            skipped,
        )

        return VectorIndexFile(
            schema_version=shape.schema_version,
            created_at=shape.created_at,
            updated_at=shape.updated_at,
            records=records,
        )

    async def save(self, file: VectorIndexFile) -> VectorIndexFile:
        """
        Stamp ``updatedAt`` and overwrite the stored document.

        Returns the file exactly as written.
        """
        written = file.model_copy(update={"updated_at": now_iso()})
        await self._blobs.save_json(self._key, written.to_json())

        logger.info(
            "Saved index document: schemaVersion=%d records=%d",
            written.schema_version,
            len(written.records),
        )
        return written
