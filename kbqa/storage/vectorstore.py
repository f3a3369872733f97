"""Vector store adapters (PGVector and in-memory).

Methods are synchronous like the underlying psycopg pool; async callers
run them through ``asyncio.to_thread``.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from contextlib import contextmanager
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np
import psycopg
from psycopg_pool import ConnectionPool, PoolTimeout

from kbqa.domain.chunk import Chunk
from kbqa.errors import VectorStoreError

logger = logging.getLogger(__name__)

# Columns that may appear in a delete/count filter
FILTER_COLUMNS = ("source_path", "content_hash", "chunk_id")

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


@dataclass(frozen=True, slots=True)
class VectorMatch:
    """A nearest-neighbour hit.

    Attributes:
        text: Chunk text
        metadata: source_path, chunk_index, content_hash plus any extra metadata
        distance: Cosine distance to the query vector (0 = identical)
    """

    text: str
    metadata: dict = field(default_factory=dict)
    distance: float = 0.0


class BaseVectorStore(ABC):
    """Vector store interface used by ingestion and hybrid search."""

    def initialize(self) -> None:
        """Open connections and create storage if needed."""

    def close(self) -> None:
        """Release connections."""

    @abstractmethod
    def upsert(
        self,
        chunks: Sequence[Chunk],
        vectors: Sequence[Sequence[float]],
        metadata: dict | None = None,
    ) -> None:
        """Insert or replace chunks with their vectors.

        Args:
            chunks: Chunks to store
            vectors: One vector per chunk
            metadata: Extra metadata applied to every chunk
        """

    @abstractmethod
    def query(self, query_vector: Sequence[float], top_n: int = 10) -> List[VectorMatch]:
        """Return the top_n nearest chunks by cosine distance, nearest first."""

    @abstractmethod
    def delete_where(self, filter: dict) -> int:
        """Delete chunks matching every key in filter. Returns rows deleted."""

    @abstractmethod
    def fetch_chunks(self, source_path: str | None = None) -> List[Chunk]:
        """Return stored chunks, optionally for one source, ordered by source and index."""

    @abstractmethod
    def get_content_hash(self, source_path: str) -> str | None:
        """Return the content hash stored for a source, or None if absent."""

    @abstractmethod
    def count(self, source_path: str | None = None) -> int:
        """Count stored chunks, optionally for one source."""

    def list_sources(self) -> List[str]:
        """Return the distinct source paths in the store."""
        return sorted({chunk.source_path for chunk in self.fetch_chunks()})


def _validate_filter(filter: dict) -> None:
    if not filter:
        raise ValueError("delete_where requires a non-empty filter")
    unknown = set(filter) - set(FILTER_COLUMNS)
    if unknown:
        raise ValueError(f"Unsupported filter keys: {sorted(unknown)}")


def _check_vectors(chunks: Sequence[Chunk], vectors: Sequence[Sequence[float]]) -> None:
    if len(chunks) != len(vectors):
        raise ValueError(
            f"Got {len(vectors)} vectors for {len(chunks)} chunks"
        )


def _parse_vector_dim(type_str: str) -> int | None:
    """Parse pgvector type like 'vector(768)' to dimension."""
    match = re.match(r"vector\((\d+)\)", type_str)
    if not match:
        return None
    return int(match.group(1))


def _to_pgvector(vector: Sequence[float]) -> str:
    return "[" + ",".join(str(float(x)) for x in vector) + "]"


class PGVectorStore(BaseVectorStore):
    """Vector store backed by PostgreSQL with the pgvector extension."""

    def __init__(
        self,
        database_url: str,
        table_name: str = "kbqa_chunks",
        embedding_dim: int = 768,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
    ):
        """Initialize PGVectorStore.

        Args:
            database_url: PostgreSQL connection URL
            table_name: Table holding chunks and vectors
            embedding_dim: Vector dimension produced by the embedding model
            min_pool_size: Minimum pooled connections
            max_pool_size: Maximum pooled connections
        """
        if not database_url:
            raise ValueError("database_url is required for PGVectorStore")
        if not _TABLE_NAME_RE.match(table_name):
            raise ValueError(f"Invalid table name: {table_name!r}")

        self._database_url = database_url
        self.table_name = table_name
        self.embedding_dim = embedding_dim
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._pool: ConnectionPool | None = None

    def initialize(self) -> None:
        """Open the connection pool and create the table if needed."""
        self._pool = ConnectionPool(
            conninfo=self._database_url,
            min_size=self._min_pool_size,
            max_size=self._max_pool_size,
            open=False,
            kwargs={"autocommit": True},
        )
        self._pool.open()

        with self._pool.connection() as conn:
            self._create_table(conn)

    def _create_table(self, conn) -> None:
        """Create vector store table if it doesn't exist."""
        conn.execute("CREATE EXTENSION IF NOT EXISTS vector")

        row = conn.execute(
            """
            SELECT pg_catalog.format_type(atttypid, atttypmod)
            FROM pg_attribute
            WHERE attrelid = to_regclass(%s) AND attname = 'embedding'
            """,
            (self.table_name,),
        ).fetchone()

        if row:
            existing_dim = _parse_vector_dim(row[0])
            if existing_dim != self.embedding_dim:
                logger.warning(
                    "table %s has dimension %s but model requires %s, recreating",
                    self.table_name,
                    existing_dim,
                    self.embedding_dim,
                )
                conn.execute(f"DROP TABLE {self.table_name} CASCADE")

        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                chunk_id TEXT PRIMARY KEY,
                source_path TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                content TEXT NOT NULL,
                content_hash VARCHAR(64) NOT NULL,
                metadata JSONB DEFAULT '{{}}',
                embedding vector({self.embedding_dim}),
                created_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)

        # ivfflat only supports up to 2000 dimensions; fall back to hnsw above that
        method = "ivfflat" if self.embedding_dim <= 2000 else "hnsw"
        options = "WITH (lists = 100)" if method == "ivfflat" else "WITH (m = 16, ef_construction = 64)"
        conn.execute(f"""
            CREATE INDEX IF NOT EXISTS {self.table_name}_embedding_idx
            ON {self.table_name}
            USING {method} (embedding vector_cosine_ops)
            {options}
        """)
        conn.execute(f"""
            CREATE INDEX IF NOT EXISTS {self.table_name}_source_idx
            ON {self.table_name}(source_path)
        """)

    def close(self) -> None:
        """Close connections."""
        if self._pool:
            self._pool.close()
            self._pool = None

    def _require_pool(self) -> ConnectionPool:
        if not self._pool:
            raise VectorStoreError("PGVectorStore not initialized")
        return self._pool

    @contextmanager
    def _connection(self, pool: ConnectionPool):
        """Borrow a pooled connection, surfacing driver failures as VectorStoreError."""
        try:
            with pool.connection() as conn:
                yield conn
        except (psycopg.Error, PoolTimeout) as e:
            raise VectorStoreError(f"{type(e).__name__}: {e}") from e

    def upsert(self, chunks, vectors, metadata=None) -> None:
        _check_vectors(chunks, vectors)
        pool = self._require_pool()

        with self._connection(pool) as conn:
            with conn.transaction():
                for chunk, vector in zip(chunks, vectors):
                    conn.execute(f"""
                        INSERT INTO {self.table_name}
                        (chunk_id, source_path, chunk_index, content, content_hash, metadata, embedding)
                        VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s::vector)
                        ON CONFLICT (chunk_id) DO UPDATE SET
                            content = EXCLUDED.content,
                            content_hash = EXCLUDED.content_hash,
                            metadata = EXCLUDED.metadata,
                            embedding = EXCLUDED.embedding
                    """, (
                        chunk.id,
                        chunk.source_path,
                        chunk.index,
                        chunk.text,
                        chunk.content_hash,
                        json.dumps({**chunk.metadata, **(metadata or {})}),
                        _to_pgvector(vector),
                    ))

    def query(self, query_vector, top_n=10) -> List[VectorMatch]:
        pool = self._require_pool()
        embedding_str = _to_pgvector(query_vector)

        with self._connection(pool) as conn:
            rows = conn.execute(f"""
                SELECT content, source_path, chunk_index, content_hash, metadata,
                       embedding <=> %s::vector AS distance
                FROM {self.table_name}
                ORDER BY distance
                LIMIT %s
            """, (embedding_str, top_n)).fetchall()

        return [
            VectorMatch(
                text=row[0],
                metadata={
                    **(row[4] or {}),
                    "source_path": row[1],
                    "chunk_index": row[2],
                    "content_hash": row[3],
                },
                distance=float(row[5]),
            )
            for row in rows
        ]

    def _where(self, filter: dict) -> tuple[str, list]:
        clauses = [f"{column} = %s" for column in filter]
        return " AND ".join(clauses), list(filter.values())

    def delete_where(self, filter: dict) -> int:
        _validate_filter(filter)
        pool = self._require_pool()
        where, params = self._where(filter)

        with self._connection(pool) as conn:
            cursor = conn.execute(f"DELETE FROM {self.table_name} WHERE {where}", params)
            return cursor.rowcount

    def fetch_chunks(self, source_path=None) -> List[Chunk]:
        pool = self._require_pool()
        sql = f"""
            SELECT chunk_id, content, source_path, chunk_index, content_hash, metadata
            FROM {self.table_name}
        """
        params: list = []
        if source_path is not None:
            sql += " WHERE source_path = %s"
            params.append(source_path)
        sql += " ORDER BY source_path, chunk_index"

        with self._connection(pool) as conn:
            rows = conn.execute(sql, params).fetchall()

        return [
            Chunk(
                id=row[0],
                text=row[1],
                source_path=row[2],
                index=row[3],
                content_hash=row[4],
                metadata=row[5] or {},
            )
            for row in rows
        ]

    def get_content_hash(self, source_path: str) -> str | None:
        pool = self._require_pool()
        with self._connection(pool) as conn:
            row = conn.execute(
                f"SELECT content_hash FROM {self.table_name} WHERE source_path = %s LIMIT 1",
                (source_path,),
            ).fetchone()
        return row[0] if row else None

    def count(self, source_path=None) -> int:
        pool = self._require_pool()
        sql = f"SELECT COUNT(*) FROM {self.table_name}"
        params: list = []
        if source_path is not None:
            sql += " WHERE source_path = %s"
            params.append(source_path)
        with self._connection(pool) as conn:
            return int(conn.execute(sql, params).fetchone()[0])

    def list_sources(self) -> List[str]:
        pool = self._require_pool()
        with self._connection(pool) as conn:
            rows = conn.execute(
                f"SELECT DISTINCT source_path FROM {self.table_name} ORDER BY source_path"
            ).fetchall()
        return [row[0] for row in rows]


class InMemoryVectorStore(BaseVectorStore):
    """Process-local vector store using brute-force cosine distance.

    Suitable for development and tests; contents are lost on restart.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[str, tuple[Chunk, np.ndarray]] = {}

    def upsert(self, chunks, vectors, metadata=None) -> None:
        _check_vectors(chunks, vectors)
        with self._lock:
            for chunk, vector in zip(chunks, vectors):
                if metadata:
                    chunk = Chunk(
                        id=chunk.id,
                        text=chunk.text,
                        source_path=chunk.source_path,
                        index=chunk.index,
                        content_hash=chunk.content_hash,
                        metadata={**chunk.metadata, **metadata},
                    )
                self._records[chunk.id] = (chunk, np.asarray(vector, dtype=float))

    def query(self, query_vector, top_n=10) -> List[VectorMatch]:
        with self._lock:
            records = list(self._records.values())
        if not records:
            return []

        query = np.asarray(query_vector, dtype=float)
        matrix = np.vstack([vector for _, vector in records])
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        similarity = np.divide(
            matrix @ query, norms, out=np.zeros(len(records)), where=norms > 0
        )
        distances = 1.0 - similarity
        order = np.argsort(distances, kind="stable")[:top_n]

        return [
            VectorMatch(
                text=records[i][0].text,
                metadata={
                    **records[i][0].metadata,
                    "source_path": records[i][0].source_path,
                    "chunk_index": records[i][0].index,
                    "content_hash": records[i][0].content_hash,
                },
                distance=float(distances[i]),
            )
            for i in order
        ]

    @staticmethod
    def _matches(chunk: Chunk, filter: dict) -> bool:
        values = {
            "source_path": chunk.source_path,
            "content_hash": chunk.content_hash,
            "chunk_id": chunk.id,
        }
        return all(values[key] == value for key, value in filter.items())

    def delete_where(self, filter: dict) -> int:
        _validate_filter(filter)
        with self._lock:
            doomed = [
                chunk_id
                for chunk_id, (chunk, _) in self._records.items()
                if self._matches(chunk, filter)
            ]
            for chunk_id in doomed:
                del self._records[chunk_id]
        return len(doomed)

    def fetch_chunks(self, source_path=None) -> List[Chunk]:
        with self._lock:
            chunks = [chunk for chunk, _ in self._records.values()]
        if source_path is not None:
            chunks = [c for c in chunks if c.source_path == source_path]
        return sorted(chunks, key=lambda c: (c.source_path, c.index))

    def get_content_hash(self, source_path: str) -> str | None:
        for chunk in self.fetch_chunks(source_path):
            return chunk.content_hash
        return None

    def count(self, source_path=None) -> int:
        return len(self.fetch_chunks(source_path))


def create_vector_store(
    backend: str,
    database_url: str = "",
    table_name: str = "kbqa_chunks",
    embedding_dim: int = 768,
) -> BaseVectorStore:
    """Create a vector store by backend name."""
    if backend == "pgvector":
        return PGVectorStore(
            database_url=database_url,
            table_name=table_name,
            embedding_dim=embedding_dim,
        )
    if backend == "memory":
        return InMemoryVectorStore()
    raise ValueError(f"Unsupported vector store backend: {backend}")
