"""Chunk entity for the KB Q&A service."""

from dataclasses import dataclass, asdict, field


def make_chunk_id(source_path: str, index: int) -> str:
    """Build the stable chunk ID for a position within a source.

    The same source path and index always produce the same ID, so
    re-ingesting unchanged content writes the same records.
    """
    return f"{source_path}#{index}"


@dataclass(frozen=True, slots=True)
class Chunk:
    """Immutable chunk entity.

    A contiguous slice of a source document, the unit of retrieval.

    Attributes:
        id: Stable identifier derived from source path and index
        text: Chunk text (at most ~1000 characters)
        source_path: Path of the source document
        index: 0-based position within the source
        content_hash: SHA-256 of the whole source, for change detection
        metadata: Additional metadata dict (optional)
    """

    id: str
    text: str
    source_path: str
    index: int
    content_hash: str
    metadata: dict = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, int]:
        """Source + chunk key used to match results across retrieval branches."""
        return (self.source_path, self.index)

    def to_dict(self) -> dict:
        """Convert chunk to dictionary for serialization."""
        return asdict(self)
