"""Storage adapters: embeddings, vector store and lexical index."""

from kbqa.storage.embeddings import BaseEmbeddings, GeminiEmbeddings, JinaEmbeddings, create_embeddings
from kbqa.storage.lexical_index import LexicalDoc, LexicalIndex, LexicalMatch
from kbqa.storage.vectorstore import (
    BaseVectorStore,
    InMemoryVectorStore,
    PGVectorStore,
    VectorMatch,
    create_vector_store,
)

__all__ = [
    "BaseEmbeddings",
    "GeminiEmbeddings",
    "JinaEmbeddings",
    "create_embeddings",
    "LexicalDoc",
    "LexicalIndex",
    "LexicalMatch",
    "BaseVectorStore",
    "InMemoryVectorStore",
    "PGVectorStore",
    "VectorMatch",
    "create_vector_store",
]
