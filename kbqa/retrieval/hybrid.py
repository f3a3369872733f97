"""Hybrid semantic + keyword search using weighted score fusion.

Combines vector similarity search with the in-memory lexical index
for better recall on exact terms (acronyms, identifiers) that embeddings
often miss.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Sequence, TypeVar

from kbqa.domain.results import Provenance, RankedResult, RetrievalCandidate
from kbqa.errors import RetrievalUnavailableError
from kbqa.storage.embeddings import BaseEmbeddings
from kbqa.storage.lexical_index import LexicalIndex
from kbqa.storage.vectorstore import BaseVectorStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def normalize_scores(candidates: Sequence[RetrievalCandidate]) -> List[float]:
    """Scale a branch's scores to [0, 1] by dividing by its maximum.

    A maximum of 0 (or an empty list) leaves every score at 0.
    """
    if not candidates:
        return []
    top = max(c.raw_score for c in candidates)
    if top <= 0:
        return [0.0 for _ in candidates]
    return [max(0.0, c.raw_score / top) for c in candidates]


def fuse_results(
    semantic: Sequence[RetrievalCandidate],
    lexical: Sequence[RetrievalCandidate],
    semantic_weight: float = 0.7,
    lexical_weight: float = 0.3,
    top_k: int = 5,
) -> List[RankedResult]:
    """Fuse two ranked candidate lists by weighted normalized score.

    final = semantic_weight * semantic_norm + lexical_weight * lexical_norm

    A chunk found by both branches (same source + chunk index) receives both
    weighted contributions. Ties keep semantic rank order, then lexical.

    Args:
        semantic: Semantic candidates, best first
        lexical: Lexical candidates, best first
        semantic_weight: Weight of the semantic branch
        lexical_weight: Weight of the lexical branch
        top_k: Number of results to return

    Returns:
        Fused results sorted by final score descending
    """
    fused: dict[tuple[str, int], dict] = {}

    for candidate, score in zip(semantic, normalize_scores(semantic)):
        entry = fused.get(candidate.key)
        if entry is None:
            fused[candidate.key] = {"candidate": candidate, "semantic": score, "lexical": 0.0,
                                    "provenance": [Provenance.SEMANTIC]}
        else:
            entry["semantic"] = max(entry["semantic"], score)

    for candidate, score in zip(lexical, normalize_scores(lexical)):
        entry = fused.get(candidate.key)
        if entry is None:
            fused[candidate.key] = {"candidate": candidate, "semantic": 0.0, "lexical": score,
                                    "provenance": [Provenance.LEXICAL]}
        else:
            entry["lexical"] = max(entry["lexical"], score)
            if Provenance.LEXICAL not in entry["provenance"]:
                entry["provenance"].append(Provenance.LEXICAL)

    results = [
        RankedResult(
            content=entry["candidate"].content,
            source_path=entry["candidate"].source_path,
            chunk_index=entry["candidate"].chunk_index,
            final_score=semantic_weight * entry["semantic"] + lexical_weight * entry["lexical"],
            provenance=tuple(entry["provenance"]),
            semantic_score=entry["semantic"],
            lexical_score=entry["lexical"],
        )
        for entry in fused.values()
    ]

    # dicts keep insertion order, so the stable sort breaks ties by semantic rank
    results.sort(key=lambda r: r.final_score, reverse=True)
    return results[:top_k]


class HybridSearcher:
    """Hybrid searcher combining semantic and keyword search.

    Both branches run concurrently. If one fails or times out the search
    degrades to the other; if both fail, RetrievalUnavailableError is raised
    so callers can tell an outage apart from "no relevant content".
    """

    def __init__(
        self,
        embeddings: BaseEmbeddings,
        vector_store: BaseVectorStore,
        lexical_index: LexicalIndex,
        top_k: int = 5,
        semantic_top_n: int = 10,
        semantic_weight: float = 0.7,
        lexical_weight: float = 0.3,
        fuzzy: float = 0.2,
        branch_timeout: float = 10.0,
    ):
        """Initialize HybridSearcher.

        Args:
            embeddings: Embedding client for the query vector
            vector_store: Vector store for semantic search
            lexical_index: Keyword index for lexical search
            top_k: Number of fused results to return
            semantic_top_n: Nearest neighbours requested (raised to top_k if lower)
            semantic_weight: Semantic branch weight
            lexical_weight: Lexical branch weight
            fuzzy: Lexical edit-distance tolerance
            branch_timeout: Seconds before a branch counts as failed
        """
        self._embeddings = embeddings
        self._vector_store = vector_store
        self._lexical_index = lexical_index
        self.top_k = top_k
        self.semantic_top_n = max(semantic_top_n, top_k)
        self.semantic_weight = semantic_weight
        self.lexical_weight = lexical_weight
        self.fuzzy = fuzzy
        self.branch_timeout = branch_timeout

    async def _lexical_search(self, query: str) -> List[RetrievalCandidate]:
        matches = await asyncio.to_thread(
            self._lexical_index.search, query, self.fuzzy
        )
        return [
            RetrievalCandidate(
                content=m.content,
                source_path=m.source_path,
                chunk_index=m.chunk_index,
                raw_score=m.score,
                provenance=Provenance.LEXICAL,
            )
            for m in matches
        ]

    async def _semantic_search(self, query: str) -> List[RetrievalCandidate]:
        query_vector = await self._embeddings.embed_query(query)
        matches = await asyncio.to_thread(
            self._vector_store.query, query_vector, self.semantic_top_n
        )
        return [
            RetrievalCandidate(
                content=m.text,
                source_path=str(m.metadata.get("source_path", "unknown")),
                chunk_index=int(m.metadata.get("chunk_index", 0)),
                raw_score=1.0 - m.distance,
                provenance=Provenance.SEMANTIC,
            )
            for m in matches
        ]

    async def _timed(self, branch: str, factory: Callable[[], Awaitable[T]]) -> T:
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(factory(), timeout=self.branch_timeout)
        except Exception as e:
            logger.warning(
                "%s branch failed: ms=%d error=%r",
                branch,
                int((time.monotonic() - start) * 1000),
                e,
            )
            raise
        logger.info(
            "%s branch: count=%d ms=%d",
            branch,
            len(result),
            int((time.monotonic() - start) * 1000),
        )
        return result

    async def search(self, query: str) -> List[RankedResult]:
        """Perform hybrid search.

        Args:
            query: Search query

        Returns:
            At most top_k results, best first; empty for a blank query

        Raises:
            RetrievalUnavailableError: If both branches fail
        """
        if not query or not query.strip():
            logger.info("empty query, skipping search")
            return []

        start = time.monotonic()
        lexical, semantic = await asyncio.gather(
            self._timed("lexical", lambda: self._lexical_search(query)),
            self._timed("semantic", lambda: self._semantic_search(query)),
            return_exceptions=True,
        )

        errors: dict[str, BaseException] = {}
        if isinstance(lexical, BaseException):
            errors["lexical"] = lexical
            lexical = []
        if isinstance(semantic, BaseException):
            errors["semantic"] = semantic
            semantic = []

        if len(errors) == 2:
            logger.error("retrieval unavailable: both branches failed")
            raise RetrievalUnavailableError(errors)
        if errors:
            logger.warning("retrieval degraded: continuing without %s", ", ".join(errors))

        results = fuse_results(
            semantic,
            lexical,
            semantic_weight=self.semantic_weight,
            lexical_weight=self.lexical_weight,
            top_k=self.top_k,
        )
        logger.info(
            "hybrid search: semantic=%d lexical=%d returned=%d ms=%d",
            len(semantic),
            len(lexical),
            len(results),
            int((time.monotonic() - start) * 1000),
        )
        return results
