"""
Retrieval Routes

Semantic retrieval over the knowledge index: the query is embedded, ranked by
cosine similarity, and knowledge node hits are hydrated from the blob store.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from .models import RetrieveRequest
from .dependencies import get_retrieval_service
from .security import require_shared_secret
from ..knowledge.retrieval import RetrievalResponse, RetrievalService

router = APIRouter(
    prefix="/retrieve",
    tags=["retrieval"],
    dependencies=[Depends(require_shared_secret)],
)


@router.post(
    "",
    response_model=RetrievalResponse,
    summary="Retrieve knowledge similar to a query",
    status_code=status.HTTP_200_OK,
)
async def retrieve(
    req: RetrieveRequest,
    retrieval: Annotated[RetrievalService, Depends(get_retrieval_service)],
) -> RetrievalResponse:
    """
    Embed ``req.query`` and return the ``req.top_k`` best matches.

    An embedding failure yields ``status="degraded"`` with no results rather
    than an error response.
    """
    return await retrieval.retrieve(req.query, req.top_k)
