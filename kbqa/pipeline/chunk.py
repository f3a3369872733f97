"""Document chunking strategy."""

import hashlib
from typing import List

from langchain_text_splitters import RecursiveCharacterTextSplitter

from kbqa.config import ChunkingConfig
from kbqa.domain.chunk import Chunk, make_chunk_id


def content_hash(text: str) -> str:
    """SHA-256 hex digest of a whole source text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class ChunkingStrategy:
    """Overlapping windows that prefer paragraph, line and word boundaries."""

    def __init__(self, config: ChunkingConfig | None = None):
        """Initialize chunking strategy."""
        self._config = config or ChunkingConfig()
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=self._config.chunk_size,
            chunk_overlap=self._config.chunk_overlap,
            length_function=len,
            separators=["\n\n", "\n", " ", ""],
        )

    @property
    def config(self) -> ChunkingConfig:
        return self._config

    def split_text(self, text: str) -> List[str]:
        """Split raw text into window strings."""
        if not text or not text.strip():
            return []
        return self._splitter.split_text(text)

    def split(self, source_path: str, text: str, metadata: dict | None = None) -> List[Chunk]:
        """Split a source into chunks carrying the whole-source hash."""
        digest = content_hash(text)
        return [
            Chunk(
                id=make_chunk_id(source_path, index),
                text=piece,
                source_path=source_path,
                index=index,
                content_hash=digest,
                metadata=dict(metadata or {}),
            )
            for index, piece in enumerate(self.split_text(text))
        ]
