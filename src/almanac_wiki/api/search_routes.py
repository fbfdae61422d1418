"""
Search Routes

Direct semantic search over the document corpus, using the same client the
generation pipeline uses.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from .dependencies import get_search_client
from .models import SearchRequest, SearchResponse
from ..rag.search import VectorSearchClient

router = APIRouter(prefix="/search", tags=["search"])


@router.post(
    "/",
    response_model=SearchResponse,
    summary="Vector-based semantic search",
    status_code=status.HTTP_200_OK,
)
async def search(
    req: SearchRequest,
    client: Annotated[VectorSearchClient, Depends(get_search_client)],
) -> SearchResponse:
    """
    Perform a similarity search over embedded document chunks.

    Parameters
    ----------
    req : SearchRequest
        Contains:
        - query: Search query string
        - threshold: Minimum similarity (optional)
        - limit: Maximum number of chunks (optional)

    Returns
    -------
    SearchResponse
        Chunks ordered by descending similarity. Retrieval failures yield
        an empty list rather than an error.
    """
    results = await client.search(req.query, threshold=req.threshold, limit=req.limit)
    return SearchResponse(results=results, total_results=len(results))
