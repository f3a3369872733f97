"""Ingestion pipeline: chunk, embed and index a source document."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List

from kbqa.domain.chunk import Chunk
from kbqa.errors import IngestionError, QuotaExceededError
from kbqa.pipeline.chunk import ChunkingStrategy, content_hash
from kbqa.pipeline.estimate import QuotaEstimate, describe_quota_violation, estimate_quota
from kbqa.storage.embeddings import BaseEmbeddings
from kbqa.storage.lexical_index import LexicalDoc, LexicalIndex
from kbqa.storage.vectorstore import BaseVectorStore

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    """Outcome of ingesting one source.

    Attributes:
        source_path: Source document path
        status: "indexed" (new), "updated" (content changed) or "skipped" (unchanged)
        chunk_count: Chunks stored for the source after ingestion
        chunks_deleted: Chunks removed before re-inserting changed content
    """

    source_path: str
    status: str
    chunk_count: int
    chunks_deleted: int = 0

    def to_dict(self) -> dict:
        return {
            "source_path": self.source_path,
            "status": self.status,
            "chunk_count": self.chunk_count,
            "chunks_deleted": self.chunks_deleted,
        }


@dataclass
class SourceInfo:
    """An ingested source and its chunk count."""

    source_path: str
    chunk_count: int

    def to_dict(self) -> dict:
        return {"source_path": self.source_path, "chunk_count": self.chunk_count}


def _lexical_docs(chunks: List[Chunk]) -> List[LexicalDoc]:
    return [
        LexicalDoc(
            id=chunk.id,
            content=chunk.text,
            source_path=chunk.source_path,
            chunk_index=chunk.index,
        )
        for chunk in chunks
    ]


class IngestionPipeline:
    """Writes chunks, vectors and metadata to the vector store and lexical index.

    Idempotent by whole-source content hash: unchanged content is skipped,
    changed content replaces every chunk of that source. The two writes are
    not atomic; re-ingesting the same source repairs any divergence.
    """

    def __init__(
        self,
        embeddings: BaseEmbeddings,
        vector_store: BaseVectorStore,
        lexical_index: LexicalIndex,
        chunker: ChunkingStrategy | None = None,
        tokens_per_chunk: int = 180,
        token_limit: int = 100_000,
        record_quota: int = 300,
    ):
        """Initialize pipeline.

        Args:
            embeddings: Embedding client
            vector_store: Vector store adapter
            lexical_index: Keyword index
            chunker: Chunking strategy (1000/200 windows by default)
            tokens_per_chunk: Token estimate per chunk for the quota check
            token_limit: Maximum estimated tokens per document (0 disables)
            record_quota: Maximum chunks per document (0 disables)
        """
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.lexical_index = lexical_index
        self.chunker = chunker or ChunkingStrategy()
        self.tokens_per_chunk = tokens_per_chunk
        self.token_limit = token_limit
        self.record_quota = record_quota

    def estimate(self, text: str) -> QuotaEstimate:
        return estimate_quota(
            text,
            chunker=self.chunker,
            tokens_per_chunk=self.tokens_per_chunk,
            token_limit=self.token_limit,
            record_quota=self.record_quota,
        )

    async def ingest(self, source_path: str, text: str, metadata: dict | None = None) -> IngestResult:
        """Ingest or re-ingest a source.

        Args:
            source_path: Path identifying the source
            text: Full source text
            metadata: Extra metadata stored with every chunk

        Returns:
            IngestResult with the source's chunk count

        Raises:
            IngestionError: If the path or text is empty
            QuotaExceededError: If the document exceeds the ingest limits
            EmbeddingError: If the embedding service fails
        """
        if not source_path or not source_path.strip():
            raise IngestionError("source_path is required")
        if not text or not text.strip():
            raise IngestionError("Cannot ingest empty text content")

        start = time.monotonic()
        digest = content_hash(text)
        existing_hash = await asyncio.to_thread(self.vector_store.get_content_hash, source_path)

        if existing_hash == digest:
            count = await asyncio.to_thread(self.vector_store.count, source_path)
            if not self.lexical_index.has_source(source_path):
                stored = await asyncio.to_thread(self.vector_store.fetch_chunks, source_path)
                self.lexical_index.add_all(_lexical_docs(stored))
                logger.info("lexical index backfilled: source=%s chunks=%d", source_path, len(stored))
            logger.info("unchanged content, skipping: source=%s chunks=%d", source_path, count)
            return IngestResult(source_path=source_path, status="skipped", chunk_count=count)

        estimate = self.estimate(text)
        if not estimate.within_limits:
            logger.warning(
                "ingest quota exceeded: source=%s chunks=%d tokens=%d",
                source_path,
                estimate.estimated_chunks,
                estimate.estimated_tokens,
            )
            raise QuotaExceededError(
                describe_quota_violation(estimate, self.tokens_per_chunk), estimate=estimate
            )

        chunks = self.chunker.split(source_path, text, metadata)
        if not chunks:
            raise IngestionError("Text splitting produced no chunks")

        vectors = await self.embeddings.embed([chunk.text for chunk in chunks])

        deleted = 0
        if existing_hash is not None:
            deleted = await asyncio.to_thread(
                self.vector_store.delete_where, {"source_path": source_path}
            )
        await asyncio.to_thread(self.vector_store.upsert, chunks, vectors)

        self.lexical_index.remove_source(source_path)
        self.lexical_index.add_all(_lexical_docs(chunks))

        status = "updated" if existing_hash is not None else "indexed"
        logger.info(
            "ingested: source=%s status=%s chunks=%d deleted=%d chars=%d ms=%d",
            source_path,
            status,
            len(chunks),
            deleted,
            len(text),
            int((time.monotonic() - start) * 1000),
        )
        return IngestResult(
            source_path=source_path,
            status=status,
            chunk_count=len(chunks),
            chunks_deleted=deleted,
        )

    async def remove(self, source_path: str) -> int:
        """Remove a source from both indexes. Returns chunks deleted from the vector store."""
        deleted = await asyncio.to_thread(
            self.vector_store.delete_where, {"source_path": source_path}
        )
        self.lexical_index.remove_source(source_path)
        logger.info("removed source: source=%s chunks=%d", source_path, deleted)
        return deleted

    async def list_sources(self) -> List[SourceInfo]:
        """Ingested sources with their chunk counts."""
        chunks = await asyncio.to_thread(self.vector_store.fetch_chunks)
        counts: dict[str, int] = {}
        for chunk in chunks:
            counts[chunk.source_path] = counts.get(chunk.source_path, 0) + 1
        return [SourceInfo(source_path=path, chunk_count=n) for path, n in sorted(counts.items())]

    async def warm_lexical_index(self) -> int:
        """Rebuild the in-memory lexical index from the vector store."""
        chunks = await asyncio.to_thread(self.vector_store.fetch_chunks)
        added = self.lexical_index.add_all(_lexical_docs(chunks))
        logger.info("lexical index warmed: chunks=%d", added)
        return added
