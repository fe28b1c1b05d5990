"""
Index Routes

Read-only diagnostics for the vector index.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from .models import IndexStatsResponse
from .dependencies import get_index
from .security import require_shared_secret
from ..embeddings.index import VectorIndexCache

router = APIRouter(
    prefix="/index",
    tags=["index"],
    dependencies=[Depends(require_shared_secret)],
)


@router.get(
    "/stats",
    response_model=IndexStatsResponse,
    summary="Get embedding index statistics",
)
async def get_index_stats(
    index: Annotated[VectorIndexCache, Depends(get_index)],
) -> IndexStatsResponse:
    return IndexStatsResponse(**await index.stats())
