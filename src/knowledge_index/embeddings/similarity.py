"""
Cosine Similarity Search

Exact, full-scan ranking of cached embeddings against a query vector.

Record norms are computed once when the cache is (re)built, so a query costs
one matrix-vector product, O(n·d). There is no pruning and no approximate
structure; this is sized for thousands of records, not millions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

import numpy as np

from .models import CachedEmbedding, EmbeddingRecord, SearchHit


def compute_norm(vector: Sequence[float]) -> float:
    """Euclidean norm. 0.0 for empty or all-zero vectors."""
    if len(vector) == 0:
        return 0.0
    return float(np.linalg.norm(np.asarray(vector, dtype=np.float64)))


@dataclass(frozen=True, eq=False)
class SimilarityMatrix:
    """
    Immutable, search-ready view of a list of cached embeddings.

    ``vectors`` is an ``(n, d)`` matrix in cache order and ``norms`` the
    matching precomputed norms.
    """

    entries: Tuple[CachedEmbedding, ...] = ()
    vectors: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    norms: np.ndarray = field(default_factory=lambda: np.zeros(0))

    @classmethod
    def build(cls, records: Sequence[EmbeddingRecord]) -> "SimilarityMatrix":
        entries = tuple(
            CachedEmbedding(record=r, norm=compute_norm(r.vector)) for r in records
        )
        if not entries:
            return cls()

        vectors = np.asarray([e.record.vector for e in entries], dtype=np.float64)
        norms = np.asarray([e.norm for e in entries], dtype=np.float64)
        vectors.setflags(write=False)
        norms.setflags(write=False)
        return cls(entries=entries, vectors=vectors, norms=norms)

    @property
    def dimension(self) -> int:
        """Vector length of the first entry, or 0 when empty."""
        if not self.entries:
            return 0
        return len(self.entries[0].record.vector)

    def rank(self, query: Sequence[float], top_k: int) -> List[SearchHit]:
        """
        Score every nonzero-norm entry and return the best ``top_k``.

        The caller validates the query (length, nonzero norm). Zero-norm
        entries are skipped silently. Ties keep cache order.
        """
        limit = max(0, int(top_k))
        if limit == 0 or not self.entries:
            return []

        q = np.asarray(query, dtype=np.float64)
        query_norm = float(np.linalg.norm(q))

        candidates = np.flatnonzero(self.norms != 0.0)
        if candidates.size == 0:
            return []

        scores = (self.vectors[candidates] @ q) / (self.norms[candidates] * query_norm)

        # Stable sort on the negated scores keeps cache order for ties.
        order = np.argsort(-scores, kind="stable")[:limit]

        return [
            SearchHit(record=self.entries[int(candidates[i])].record, score=float(scores[i]))
            for i in order
        ]
