"""Ingest quota pre-flight.

Estimates chunk and token counts for a document before any embedding call
is made, so oversized uploads are rejected cheaply.
"""

from __future__ import annotations

from dataclasses import dataclass

from kbqa.pipeline.chunk import ChunkingStrategy

# Characters of new text contributed per chunk with 1000/200 windows
_CHARS_PER_CHUNK = 800


@dataclass
class QuotaEstimate:
    """Pre-flight estimate for one document.

    A limit of 0 means unlimited; its "within" flag is then always True.
    """

    text_length: int
    estimated_chunks: int
    estimated_tokens: int
    token_limit: int
    record_quota: int

    @property
    def within_token_limit(self) -> bool:
        return self.token_limit <= 0 or self.estimated_tokens <= self.token_limit

    @property
    def within_record_quota(self) -> bool:
        return self.record_quota <= 0 or self.estimated_chunks <= self.record_quota

    @property
    def within_limits(self) -> bool:
        return self.within_token_limit and self.within_record_quota

    @property
    def remaining_tokens(self) -> int | None:
        if self.token_limit <= 0:
            return None
        return self.token_limit - self.estimated_tokens

    @property
    def remaining_records(self) -> int | None:
        if self.record_quota <= 0:
            return None
        return self.record_quota - self.estimated_chunks

    def to_dict(self) -> dict:
        return {
            "text_length": self.text_length,
            "estimated_chunks": self.estimated_chunks,
            "estimated_tokens": self.estimated_tokens,
            "token_limit": self.token_limit,
            "record_quota": self.record_quota,
            "within_limits": self.within_limits,
            "remaining_tokens": self.remaining_tokens,
            "remaining_records": self.remaining_records,
        }


def estimate_quota(
    text: str,
    chunker: ChunkingStrategy | None = None,
    tokens_per_chunk: int = 180,
    token_limit: int = 100_000,
    record_quota: int = 300,
) -> QuotaEstimate:
    """Estimate chunks and tokens for text against the configured limits."""
    chunker = chunker or ChunkingStrategy()
    chunks = len(chunker.split_text(text)) if text and text.strip() else 0
    return QuotaEstimate(
        text_length=len(text) if chunks else 0,
        estimated_chunks=chunks,
        estimated_tokens=chunks * tokens_per_chunk,
        token_limit=token_limit,
        record_quota=record_quota,
    )


def describe_quota_violation(estimate: QuotaEstimate, tokens_per_chunk: int = 180) -> str:
    """Human-readable explanation of an exceeded estimate with remedies."""
    issues = []
    if not estimate.within_token_limit:
        issues.append(
            f"Token limit exceeded: {estimate.estimated_tokens} tokens "
            f"(max: {estimate.token_limit})"
        )
    if not estimate.within_record_quota:
        issues.append(
            f"Record quota exceeded: {estimate.estimated_chunks} chunks "
            f"(quota: {estimate.record_quota})"
        )

    limits = []
    if estimate.token_limit > 0 and tokens_per_chunk > 0:
        limits.append(estimate.token_limit // tokens_per_chunk)
    if estimate.record_quota > 0:
        limits.append(estimate.record_quota)
    max_chunks = min(limits) if limits else estimate.estimated_chunks
    max_kb = round(max_chunks * _CHARS_PER_CHUNK / 1024)

    issue_list = "\n".join(f"  - {issue}" for issue in issues)
    return (
        f"File exceeds limits:\n{issue_list}\n\n"
        "Current file:\n"
        f"  - Content length: {estimate.text_length} characters\n"
        f"  - Estimated chunks: {estimate.estimated_chunks}\n"
        f"  - Estimated tokens: {estimate.estimated_tokens}\n\n"
        "Solutions:\n"
        f"1. Provide a smaller file (max ~{max_kb}KB for {max_chunks} chunks)\n"
        "2. Split the file into multiple smaller parts and ingest separately\n"
        "3. Remove existing documents to free up record quota"
    )
