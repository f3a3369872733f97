"""Pydantic schemas for API request/response models."""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


# ========== Request Schemas ==========


class ChatRequest(BaseModel):
    """Request model for /chat endpoint."""

    query: str = Field(..., min_length=1, description="Question to answer")
    session_id: str = Field(..., min_length=1, description="Conversation identifier")

    @field_validator("query", "session_id")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        """Validate value is not just whitespace."""
        if not v.strip():
            raise ValueError("value cannot be empty or whitespace")
        return v.strip()


class SearchRequest(BaseModel):
    """Request model for /search endpoint."""

    query: str = Field(..., min_length=1, description="Search query")

    @field_validator("query")
    @classmethod
    def query_must_not_be_empty(cls, v: str) -> str:
        """Validate query is not just whitespace."""
        if not v.strip():
            raise ValueError("query cannot be empty or whitespace")
        return v.strip()


class IngestRequest(BaseModel):
    """Request model for /ingest endpoint."""

    source_path: str = Field(..., min_length=1, description="Path identifying the source")
    text: str = Field(..., min_length=1, description="Extracted document text")
    metadata: dict = Field(default_factory=dict, description="Extra metadata for every chunk")


# ========== Response Schemas ==========


class SearchResult(BaseModel):
    """A fused hybrid search result."""

    content: str
    source_path: str
    chunk_index: int
    final_score: float = Field(..., ge=0.0)
    provenance: List[str] = Field(default_factory=list)
    semantic_score: float = 0.0
    lexical_score: float = 0.0


class SearchResponse(BaseModel):
    """Response model for /search endpoint."""

    query: str
    results: List[SearchResult]
    retrieval_time_ms: int


class IngestResponse(BaseModel):
    """Response model for /ingest endpoint."""

    source_path: str
    status: str
    chunk_count: int
    chunks_deleted: int = 0


class KnowledgeSource(BaseModel):
    """An ingested source."""

    source_path: str
    chunk_count: int


class KnowledgeListResponse(BaseModel):
    """Response model for GET /knowledge."""

    sources: List[KnowledgeSource]
    total_chunks: int


class KnowledgeDeleteResponse(BaseModel):
    """Response model for DELETE /knowledge."""

    source_path: str
    chunks_deleted: int


class ErrorResponse(BaseModel):
    """Error body returned by exception handlers."""

    error: str
    detail: Optional[str] = None
