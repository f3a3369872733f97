"""Embedding clients over HTTP.

Both ingestion and query-time retrieval use these to turn text into
fixed-length vectors. One vector is returned per input text, in order.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import List

import httpx

from kbqa.errors import EmbeddingError

logger = logging.getLogger(__name__)


class BaseEmbeddings(ABC):
    """Abstract embedding client."""

    def __init__(
        self,
        model: str,
        api_key: str = "",
        timeout: float = 60.0,
        batch_size: int = 100,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize embedding client.

        Args:
            model: Embedding model name
            api_key: Provider API key
            timeout: Request timeout in seconds
            batch_size: Maximum texts per provider request
            transport: Optional httpx transport (used by tests)
        """
        if not api_key:
            raise ValueError(f"API key is required for {type(self).__name__}")
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._batch_size = max(1, batch_size)
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed a list of texts.

        Args:
            texts: Texts to embed

        Returns:
            One embedding vector per input text, in input order

        Raises:
            EmbeddingError: If the provider fails or returns the wrong count
        """
        if not texts:
            return []

        start = time.monotonic()
        vectors: List[List[float]] = []
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            for i in range(0, len(texts), self._batch_size):
                batch = texts[i : i + self._batch_size]
                vectors.extend(await self._embed_batch(client, batch))

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding mismatch: expected {len(texts)} vectors, got {len(vectors)}"
            )

        logger.info(
            "embeddings computed: count=%d ms=%d",
            len(vectors),
            int((time.monotonic() - start) * 1000),
        )
        return vectors

    async def embed_query(self, text: str) -> List[float]:
        """Embed a single query text."""
        return (await self.embed([text]))[0]

    async def _post(self, client: httpx.AsyncClient, url: str, **kwargs) -> dict:
        """POST and decode JSON, mapping transport failures to EmbeddingError."""
        try:
            response = await client.post(url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("embedding request failed: status=%s model=%s", status, self._model)
            raise EmbeddingError(
                f"Embedding service failed (status: {status}): {e.response.text}",
                status_code=status,
            ) from e
        except httpx.HTTPError as e:
            logger.error("embedding request failed: %s model=%s", e, self._model)
            raise EmbeddingError(f"Embedding service failed: {e}") from e

    @abstractmethod
    async def _embed_batch(
        self, client: httpx.AsyncClient, texts: List[str]
    ) -> List[List[float]]:
        """Embed one provider-sized batch."""


class GeminiEmbeddings(BaseEmbeddings):
    """Google Gemini embeddings via the batchEmbedContents API."""

    API_BASE = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, model: str = "models/text-embedding-004", **kwargs):
        if not model.startswith("models/"):
            model = f"models/{model}"
        super().__init__(model=model, **kwargs)

    async def _embed_batch(
        self, client: httpx.AsyncClient, texts: List[str]
    ) -> List[List[float]]:
        url = f"{self.API_BASE}/{self._model}:batchEmbedContents?key={self._api_key}"
        data = {
            "requests": [
                {"model": self._model, "content": {"parts": [{"text": text}]}}
                for text in texts
            ]
        }

        result = await self._post(
            client, url, json=data, headers={"Content-Type": "application/json"}
        )
        if "embeddings" not in result:
            raise EmbeddingError(f"Gemini API returned unexpected response: {result}")

        return [embedding["values"] for embedding in result["embeddings"]]


class JinaEmbeddings(BaseEmbeddings):
    """Jina AI embeddings via the OpenAI-style /v1/embeddings API."""

    API_URL = "https://api.jina.ai/v1/embeddings"

    def __init__(self, model: str = "jina-embeddings-v2-base-en", **kwargs):
        super().__init__(model=model, **kwargs)

    async def _embed_batch(
        self, client: httpx.AsyncClient, texts: List[str]
    ) -> List[List[float]]:
        result = await self._post(
            client,
            self.API_URL,
            json={"input": texts, "model": self._model},
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            # Responses carry an index per item; order by it rather than trusting list order
            items = sorted(result["data"], key=lambda d: d.get("index", 0))
            return [item["embedding"] for item in items]
        except (KeyError, TypeError) as e:
            raise EmbeddingError(f"Jina API returned unexpected response: {result}") from e


def create_embeddings(
    provider: str,
    model: str,
    api_key: str,
    timeout: float = 60.0,
    batch_size: int = 100,
) -> BaseEmbeddings:
    """Create an embedding client by provider name.

    Raises:
        ValueError: If provider is not supported
    """
    if provider == "gemini":
        return GeminiEmbeddings(
            model=model, api_key=api_key, timeout=timeout, batch_size=batch_size
        )
    if provider == "jina":
        return JinaEmbeddings(
            model=model, api_key=api_key, timeout=timeout, batch_size=batch_size
        )
    raise ValueError(f"Unsupported embedding provider: {provider}. Supported: gemini, jina")
