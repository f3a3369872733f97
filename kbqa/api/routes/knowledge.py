"""Knowledge management endpoints: ingest, list and remove sources."""

from fastapi import APIRouter, Depends, HTTPException, Query

from kbqa.api.dependencies import get_pipeline
from kbqa.api.schemas import (
    IngestRequest,
    IngestResponse,
    KnowledgeDeleteResponse,
    KnowledgeListResponse,
    KnowledgeSource,
)
from kbqa.pipeline.ingest import IngestionPipeline

router = APIRouter(tags=["knowledge"])


@router.post("/ingest", response_model=IngestResponse)
async def ingest(
    request: IngestRequest,
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> IngestResponse:
    """Ingest extracted text for a source.

    Unchanged content is skipped; changed content replaces the source's chunks.
    """
    result = await pipeline.ingest(request.source_path, request.text, request.metadata)
    return IngestResponse(**result.to_dict())


@router.get("/knowledge", response_model=KnowledgeListResponse)
async def list_knowledge(
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> KnowledgeListResponse:
    """List ingested sources with their chunk counts."""
    sources = await pipeline.list_sources()
    return KnowledgeListResponse(
        sources=[KnowledgeSource(**s.to_dict()) for s in sources],
        total_chunks=sum(s.chunk_count for s in sources),
    )


@router.delete("/knowledge", response_model=KnowledgeDeleteResponse)
async def delete_knowledge(
    source_path: str = Query(..., min_length=1, description="Source to remove"),
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> KnowledgeDeleteResponse:
    """Remove a source from the vector store and the lexical index."""
    deleted = await pipeline.remove(source_path)
    if deleted == 0:
        raise HTTPException(status_code=404, detail=f"Source not found: {source_path}")
    return KnowledgeDeleteResponse(source_path=source_path, chunks_deleted=deleted)
