from __future__ import annotations

import bisect
import logging
import math
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Iterator

import numpy as np
from rank_bm25 import BM25Okapi

logger = logging.getLogger(__name__)

# Relative weight of expanded query terms, exact matches count fully
PREFIX_WEIGHT = 0.375
FUZZY_WEIGHT = 0.45
MAX_FUZZY_DISTANCE = 6


@dataclass(frozen=True, slots=True)
class LexicalDoc:
    """A document in the lexical index (one chunk)."""

    id: str
    content: str
    source_path: str
    chunk_index: int = 0


@dataclass(frozen=True, slots=True)
class LexicalMatch:
    """A keyword search hit with an unbounded BM25 score."""

    id: str
    content: str
    source_path: str
    chunk_index: int
    score: float


class _LuceneBM25(BM25Okapi):
    """BM25Okapi with the Lucene idf, which stays positive on tiny corpora."""

    def _calc_idf(self, nd):
        for word, freq in nd.items():
            self.idf[word] = math.log(1 + (self.corpus_size - freq + 0.5) / (freq + 0.5))


@lru_cache(maxsize=1)
def _tokenizer():
    import spacy

    # Blank pipeline: rule-based tokenizer and stop words, no model download
    return spacy.blank("en")


def tokenize(text: str) -> list[str]:
    """Lowercase tokens without stop words, punctuation or whitespace."""
    doc = _tokenizer()(text.lower())
    return [t.text for t in doc if not t.is_stop and not t.is_punct and not t.is_space]


def edit_distance(a: str, b: str, limit: int | None = None) -> int:
    """Levenshtein distance between a and b.

    When limit is given, returns limit + 1 as soon as the distance is known
    to exceed it.
    """
    if a == b:
        return 0
    if limit is not None and abs(len(a) - len(b)) > limit:
        return limit + 1

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        if limit is not None and min(current) > limit:
            return limit + 1
        previous = current
    return previous[-1]


class Vocabulary:
    """Indexed terms, grouped by length and kept sorted for prefix lookups."""

    def __init__(self, terms: Iterable[str]):
        self.terms = frozenset(terms)
        self._sorted = sorted(self.terms)
        self._by_length: dict[int, list[str]] = {}
        for term in self._sorted:
            self._by_length.setdefault(len(term), []).append(term)

    def __contains__(self, term: str) -> bool:
        return term in self.terms

    def __len__(self) -> int:
        return len(self.terms)

    def with_prefix(self, prefix: str) -> list[str]:
        """Terms starting with prefix, in sorted order."""
        start = bisect.bisect_left(self._sorted, prefix)
        end = start
        while end < len(self._sorted) and self._sorted[end].startswith(prefix):
            end += 1
        return self._sorted[start:end]

    def near_length(self, length: int, distance: int) -> Iterator[str]:
        """Terms whose length is within distance of length."""
        for size in range(max(1, length - distance), length + distance + 1):
            yield from self._by_length.get(size, ())


class LexicalIndex:
    """In-memory keyword index over chunks.

    BM25 scoring with fuzzy (edit distance) and prefix expansion of query
    terms. Writes happen during ingestion; searches read a consistent
    snapshot and may run concurrently with each other.
    """

    def __init__(self, fuzzy: float = 0.2, prefix: bool = True):
        """Initialize lexical index.

        Args:
            fuzzy: Default edit-distance tolerance as a fraction of term length
            prefix: Whether query terms also match vocabulary terms they prefix
        """
        self.fuzzy = fuzzy
        self.prefix = prefix
        self._lock = threading.Lock()
        self._docs: dict[str, LexicalDoc] = {}
        self._tokens: dict[str, list[str]] = {}
        self._snapshot: tuple[list[LexicalDoc], _LuceneBM25 | None, Vocabulary] | None = None

    def __len__(self) -> int:
        return len(self._docs)

    def add_all(self, docs: Iterable[LexicalDoc]) -> int:
        """Add or replace documents by ID. Returns the number added."""
        added = 0
        with self._lock:
            for doc in docs:
                self._docs[doc.id] = doc
                self._tokens[doc.id] = tokenize(doc.content)
                added += 1
            self._snapshot = None
        return added

    def remove_source(self, source_path: str) -> int:
        """Remove every document of a source. Returns the number removed."""
        with self._lock:
            doomed = [d.id for d in self._docs.values() if d.source_path == source_path]
            for doc_id in doomed:
                del self._docs[doc_id]
                del self._tokens[doc_id]
            if doomed:
                self._snapshot = None
        return len(doomed)

    def has_source(self, source_path: str) -> bool:
        return any(d.source_path == source_path for d in self._docs.values())

    def _current_snapshot(self):
        with self._lock:
            if self._snapshot is None:
                docs = list(self._docs.values())
                corpus = [self._tokens[d.id] for d in docs]
                vocabulary = Vocabulary(t for tokens in corpus for t in tokens)
                bm25 = _LuceneBM25(corpus) if vocabulary else None
                self._snapshot = (docs, bm25, vocabulary)
            return self._snapshot

    def expand_term(
        self, term: str, vocabulary: Vocabulary, fuzzy: float
    ) -> dict[str, float]:
        """Map a query term to matching vocabulary terms and their weights.

        Fuzzy candidates come only from the length buckets an edit within
        the budget can reach.
        """
        expansions: dict[str, float] = {}
        if term in vocabulary:
            expansions[term] = 1.0

        if self.prefix:
            for candidate in vocabulary.with_prefix(term):
                if candidate != term:
                    expansions[candidate] = PREFIX_WEIGHT

        max_distance = min(MAX_FUZZY_DISTANCE, round(len(term) * fuzzy)) if fuzzy > 0 else 0
        if max_distance:
            for candidate in vocabulary.near_length(len(term), max_distance):
                if candidate == term:
                    continue
                if edit_distance(term, candidate, max_distance) <= max_distance:
                    expansions[candidate] = max(expansions.get(candidate, 0.0), FUZZY_WEIGHT)
        return expansions

    def search(
        self, query: str, fuzzy: float | None = None, limit: int | None = None
    ) -> list[LexicalMatch]:
        """Keyword search.

        Args:
            query: Free-text query
            fuzzy: Edit-distance tolerance override (fraction of term length)
            limit: Maximum number of matches

        Returns:
            Matches with score > 0, best first
        """
        docs, bm25, vocabulary = self._current_snapshot()
        if bm25 is None:
            return []

        fuzzy = self.fuzzy if fuzzy is None else fuzzy
        weights: dict[str, float] = {}
        for term in tokenize(query):
            for candidate, weight in self.expand_term(term, vocabulary, fuzzy).items():
                weights[candidate] = weights.get(candidate, 0.0) + weight
        if not weights:
            return []

        scores = np.zeros(len(docs))
        for term, weight in weights.items():
            scores += weight * bm25.get_scores([term])

        order = [i for i in np.argsort(-scores, kind="stable") if scores[i] > 0]
        if limit is not None:
            order = order[:limit]

        return [
            LexicalMatch(
                id=docs[i].id,
                content=docs[i].content,
                source_path=docs[i].source_path,
                chunk_index=docs[i].chunk_index,
                score=float(scores[i]),
            )
            for i in order
        ]
