"""Typed errors for the KB Q&A service."""

from __future__ import annotations

import re
from typing import Any


class KBQAError(Exception):
    """Base class for all service errors."""


class EmbeddingError(KBQAError):
    """Embedding service call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class VectorStoreError(KBQAError):
    """Vector store is unreachable or returned an invalid response."""


class RetrievalUnavailableError(KBQAError):
    """Both retrieval branches failed.

    Distinct from an empty result: callers use this to tell "no relevant
    content" apart from "search infrastructure down".
    """

    def __init__(self, errors: dict[str, BaseException]):
        detail = ", ".join(f"{branch}: {exc!r}" for branch, exc in errors.items())
        super().__init__(f"Retrieval unavailable ({detail})")
        self.errors = errors


class ProviderError(KBQAError):
    """Language-model provider call failed."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class RateLimitError(ProviderError):
    """Provider rejected the call because of rate limiting or quota."""


class EmptyResponseError(ProviderError):
    """Provider finished without producing any text."""


class GenerationUnavailableError(KBQAError):
    """Every configured provider failed for this request."""

    def __init__(self, message: str, attempts: list[Any] | None = None):
        super().__init__(message)
        self.attempts = attempts or []


class MalformedRequestError(KBQAError):
    """Request is missing a query or session identifier."""


class PolicyViolationError(KBQAError):
    """Query asks for restricted information."""

    def __init__(self, message: str, violations: list[str] | None = None):
        super().__init__(message)
        self.violations = violations or []


class IngestionError(KBQAError):
    """Document could not be ingested."""


class QuotaExceededError(IngestionError):
    """Document exceeds the ingest token or record quota."""

    def __init__(self, message: str, estimate: Any = None):
        super().__init__(message)
        self.estimate = estimate


_RATE_LIMIT_MESSAGE = re.compile(r"rate limit|quota|resource_exhausted", re.IGNORECASE)


def is_rate_limit_error(exc: BaseException) -> bool:
    """Return True for HTTP 429 errors and rate-limit-shaped messages."""
    if isinstance(exc, RateLimitError):
        return True
    if getattr(exc, "status_code", None) == 429:
        return True
    return bool(_RATE_LIMIT_MESSAGE.search(str(exc)))
