"""Search endpoint for hybrid search without generation."""

import time

from fastapi import APIRouter, Depends

from kbqa.api.dependencies import get_chat_service
from kbqa.api.schemas import SearchRequest, SearchResponse, SearchResult
from kbqa.rag.service import ChatService

router = APIRouter(prefix="/search", tags=["search"])


@router.post("", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    service: ChatService = Depends(get_chat_service),
) -> SearchResponse:
    """Hybrid search without LLM generation.

    Returns fused results ranked by weighted semantic and lexical score.
    A retrieval outage is reported as 503 by the application's error handler.
    """
    start_time = time.time()
    results = await service.search(request.query)
    retrieval_time_ms = int((time.time() - start_time) * 1000)

    return SearchResponse(
        query=request.query,
        results=[SearchResult(**r.to_dict()) for r in results],
        retrieval_time_ms=retrieval_time_ms,
    )
