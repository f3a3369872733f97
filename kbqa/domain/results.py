"""Query-scoped retrieval records.

Created fresh for every search and never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum


class Provenance(str, Enum):
    """Retrieval branch a candidate came from."""

    SEMANTIC = "semantic"
    LEXICAL = "lexical"


@dataclass(frozen=True, slots=True)
class RetrievalCandidate:
    """A single hit from one retrieval branch, before fusion.

    Attributes:
        content: Chunk text
        source_path: Source document path
        chunk_index: Position of the chunk within its source
        raw_score: Branch-native score (unbounded for lexical, 1 - distance for semantic)
        provenance: Branch that produced the hit
    """

    content: str
    source_path: str
    chunk_index: int
    raw_score: float
    provenance: Provenance

    @property
    def key(self) -> tuple[str, int]:
        return (self.source_path, self.chunk_index)


@dataclass(frozen=True, slots=True)
class RankedResult:
    """A fused search result.

    Attributes:
        content: Chunk text
        source_path: Source document path
        chunk_index: Position of the chunk within its source
        final_score: Weighted sum of normalized branch scores
        provenance: Branches that returned this chunk, semantic first
        semantic_score: Normalized semantic score (0 when absent)
        lexical_score: Normalized lexical score (0 when absent)
    """

    content: str
    source_path: str
    chunk_index: int
    final_score: float
    provenance: tuple[Provenance, ...] = field(default_factory=tuple)
    semantic_score: float = 0.0
    lexical_score: float = 0.0

    @property
    def key(self) -> tuple[str, int]:
        return (self.source_path, self.chunk_index)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "content": self.content,
            "source_path": self.source_path,
            "chunk_index": self.chunk_index,
            "final_score": self.final_score,
            "provenance": [p.value for p in self.provenance],
            "semantic_score": self.semantic_score,
            "lexical_score": self.lexical_score,
        }
