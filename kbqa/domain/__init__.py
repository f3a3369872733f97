"""Domain entities for the KB Q&A service.

Immutable data structures shared by ingestion and query-time retrieval.
"""

from kbqa.domain.chunk import Chunk, make_chunk_id
from kbqa.domain.results import Provenance, RankedResult, RetrievalCandidate

__all__ = [
    "Chunk",
    "make_chunk_id",
    "Provenance",
    "RankedResult",
    "RetrievalCandidate",
]
