"""
Vector Index Cache

This module implements the single point of truth callers use for index state.
It owns the lazy-load-then-cache lifecycle and keeps the in-memory cache and
the persisted document reconciled on every mutating call.

Key Properties
--------------
- Explicit object, constructed once at service start and passed to every
  request path
- Lazy load: the first operation reads the document, or initializes and
  persists an empty one
- Persist-then-swap: the cache is replaced only after a successful save, so a
  failed write leaves the previous state intact
- Single writer: ``asyncio.Lock`` serializes the whole
  read-mutate-persist-swap sequence, so concurrent upserts cannot lose updates
- Lock-free reads: ``load`` and ``search`` use the current immutable snapshot
- Every mutation rewrites the whole document, O(n) per write
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ValidationError
from ..core.utils import now_iso
from .models import (
    INDEX_FILE_SCHEMA_VERSION,
    EmbeddingRecord,
    SearchHit,
    SourceType,
    VectorIndexFile,
)
from .similarity import SimilarityMatrix, compute_norm
from .store import VectorRecordStore, format_issues

logger = logging.getLogger("kindex.index")

RecordMutator = Callable[[List[EmbeddingRecord]], Iterable[EmbeddingRecord]]


# ---------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class IndexSnapshot:
    schema_version: int
    created_at: str
    updated_at: str
    matrix: SimilarityMatrix

    @property
    def records(self) -> List[EmbeddingRecord]:
        return [e.record for e in self.matrix.entries]


# ---------------------------------------------------------------------
# Record validation
# ---------------------------------------------------------------------

def coerce_record(record: object) -> EmbeddingRecord:
    """
    Validate a record (model instance or raw mapping) against the
    EmbeddingRecord contract.
    """
    try:
        if isinstance(record, EmbeddingRecord):
            return EmbeddingRecord.model_validate(record.model_dump())
        return EmbeddingRecord.model_validate(record)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid EmbeddingRecord provided. Details:\n{format_issues(exc)}"
        ) from exc


def _is_finite_number(x: object) -> bool:
    if isinstance(x, bool) or not isinstance(x, (int, float)):
        return False
    try:
        return math.isfinite(float(x))
    except OverflowError:
        return False


def _invariant_violation(
    record: EmbeddingRecord,
    dimension: Optional[int],
    ids: set,
    keys: set,
) -> Optional[str]:
    if dimension is not None and len(record.vector) != dimension:
        return (
            f"EmbeddingRecord '{record.id}' has dimension {len(record.vector)}, "
            f"index dimension is {dimension}"
        )
    if record.id in ids:
        return f"duplicate EmbeddingRecord id '{record.id}'"
    if record.identity_key in keys:
        return (
            f"duplicate source identity ({record.source_type.value}, {record.source_id}) "
            f"on EmbeddingRecord '{record.id}'"
        )
    return None


def check_invariants(
    records: Sequence[EmbeddingRecord],
    strict: bool,
) -> List[EmbeddingRecord]:
    """
    Enforce index-level invariants: one shared dimension (fixed by the first
    record), unique ``id``, unique ``(source_type, source_id)``.

    With ``strict`` the first violation raises ``ValidationError``; otherwise
    offending records are dropped with a warning.
    """
    dimension: Optional[int] = None
    ids: set = set()
    keys: set = set()
    kept: List[EmbeddingRecord] = []

    for record in records:
        problem = _invariant_violation(record, dimension, ids, keys)
        if problem is not None:
            if strict:
                raise ValidationError(f"Invalid index records: {problem}.")
            logger.warning("Dropping EmbeddingRecord from index: %s", problem)
            continue

        if dimension is None:
            dimension = len(record.vector)
        ids.add(record.id)
        keys.add(record.identity_key)
        kept.append(record)

    return kept


# ---------------------------------------------------------------------
# Vector Index Cache
# ---------------------------------------------------------------------

class VectorIndexCache:
    """
    In-memory, lifetime-of-owner cache of validated records and their norms,
    backed by a ``VectorRecordStore``.
    """

    def __init__(self, store: VectorRecordStore) -> None:
        self._store = store
        self._snapshot: Optional[IndexSnapshot] = None
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    async def ensure_loaded(self) -> IndexSnapshot:
        """
        Populate the cache on first use and return the current snapshot.
        """
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot

        async with self._write_lock:
            return await self._ensure_loaded_locked()

    async def _ensure_loaded_locked(self) -> IndexSnapshot:
        if self._snapshot is not None:
            return self._snapshot

        loaded = await self._store.load()

        if loaded is None:
            now = now_iso()
            empty = VectorIndexFile(
                schema_version=INDEX_FILE_SCHEMA_VERSION,
                created_at=now,
                updated_at=now,
                records=[],
            )
            written = await self._store.save(empty)
            self._swap(written, [])
            logger.info("Initialized new empty embeddings index (0 records).")
        else:
            records = check_invariants(loaded.records, strict=False)
            self._swap(loaded, records)
            logger.info(
                "Index cache initialized: records=%d schemaVersion=%d",
                len(records),
                loaded.schema_version,
            )

        return self._snapshot

    def _swap(self, file: VectorIndexFile, records: Sequence[EmbeddingRecord]) -> None:
        self._snapshot = IndexSnapshot(
            schema_version=file.schema_version,
            created_at=file.created_at,
            updated_at=file.updated_at,
            matrix=SimilarityMatrix.build(records),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load(self) -> List[EmbeddingRecord]:
        """All records, in cache (insertion) order."""
        snapshot = await self.ensure_loaded()
        return snapshot.records

    async def stats(self) -> Dict[str, object]:
        snapshot = await self.ensure_loaded()
        by_type = Counter(r.source_type.value for r in snapshot.records)

        return {
            "schema_version": snapshot.schema_version,
            "created_at": snapshot.created_at,
            "updated_at": snapshot.updated_at,
            "total_records": len(snapshot.matrix.entries),
            "dimension": snapshot.matrix.dimension,
            "records_by_source_type": {t.value: by_type.get(t.value, 0) for t in SourceType},
        }

    async def search(self, query_vector: Sequence[float], top_k: int) -> List[SearchHit]:
        """
        Rank cached records by cosine similarity to ``query_vector``.

        Raises
        ------
        ValidationError
            If the query is empty, its length differs from the index
            dimension, it holds a non-finite component, or its norm is zero.
        """
        snapshot = await self.ensure_loaded()

        if query_vector is None or len(query_vector) == 0:
            raise ValidationError("search: queryVector must be a non-empty number sequence.")

        matrix = snapshot.matrix
        if not matrix.entries:
            logger.debug("search: index is empty; returning no results.")
            return []

        if len(query_vector) != matrix.dimension:
            raise ValidationError(
                f"search: queryVector dimension ({len(query_vector)}) does not match "
                f"index dimension ({matrix.dimension})."
            )

        if not all(_is_finite_number(x) for x in query_vector):
            raise ValidationError("search: queryVector contains NaN, infinite or non-numeric values.")

        if compute_norm(query_vector) == 0.0:
            raise ValidationError("search: queryVector has zero norm (all zeros).")

        hits = matrix.rank(query_vector, top_k)

        logger.debug(
            "search: scanned=%d topK=%d returned=%d bestScore=%s",
            len(matrix.entries),
            top_k,
            len(hits),
            f"{hits[0].score:.4f}" if hits else "N/A",
        )
        return hits

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def replace_all(self, records: Sequence[EmbeddingRecord]) -> None:
        """
        Replace the whole index with ``records``.

        All records are validated before anything is written. The cache is
        swapped only after the document was saved.
        """
        async with self._write_lock:
            await self._ensure_loaded_locked()
            await self._replace_all_locked(records)

    async def upsert(self, record: EmbeddingRecord) -> bool:
        """
        Insert ``record``, or replace in place the entry matching its ``id``
        or its ``(source_type, source_id)``.

        Returns
        -------
        bool
            True when an existing entry was replaced.
        """
        valid = coerce_record(record)
        replaced = False

        def _apply(current: List[EmbeddingRecord]) -> List[EmbeddingRecord]:
            nonlocal replaced
            for i, existing in enumerate(current):
                if existing.id == valid.id or existing.identity_key == valid.identity_key:
                    current[i] = valid
                    replaced = True
                    break
            else:
                current.append(valid)
            return current

        await self.update(_apply)

        logger.info(
            "upsert: id=%s sourceType=%s sourceId=%s action=%s",
            valid.id,
            valid.source_type.value,
            valid.source_id,
            "updated" if replaced else "added",
        )
        return replaced

    async def update(self, mutator: RecordMutator) -> List[EmbeddingRecord]:
        """
        Apply ``mutator`` to a copy of the current records and persist the
        result, all under the write lock.

        This is how callers delete (return a filtered list) or replace a
        group of records in one write.
        """
        async with self._write_lock:
            snapshot = await self._ensure_loaded_locked()
            new_records = list(mutator(list(snapshot.records)))
            return await self._replace_all_locked(new_records)

    async def _replace_all_locked(
        self,
        records: Sequence[EmbeddingRecord],
    ) -> List[EmbeddingRecord]:
        validated: Tuple[EmbeddingRecord, ...] = tuple(coerce_record(r) for r in records)
        check_invariants(validated, strict=True)

        current = self._snapshot
        file = VectorIndexFile(
            schema_version=INDEX_FILE_SCHEMA_VERSION,
            created_at=(current.created_at if current and current.created_at else now_iso()),
            updated_at=now_iso(),
            records=list(validated),
        )

        written = await self._store.save(file)
        self._swap(written, validated)

        logger.info("Index fully replaced: records=%d", len(validated))
        return list(validated)
