"""Document ingestion pipeline."""

from kbqa.pipeline.chunk import ChunkingConfig, ChunkingStrategy, content_hash
from kbqa.pipeline.estimate import QuotaEstimate, describe_quota_violation, estimate_quota
from kbqa.pipeline.ingest import IngestionPipeline, IngestResult, SourceInfo

__all__ = [
    "ChunkingConfig",
    "ChunkingStrategy",
    "IngestResult",
    "IngestionPipeline",
    "QuotaEstimate",
    "SourceInfo",
    "content_hash",
    "describe_quota_violation",
    "estimate_quota",
]
