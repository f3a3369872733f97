"""Query-time retrieval."""

from kbqa.retrieval.hybrid import HybridSearcher, fuse_results, normalize_scores

__all__ = ["HybridSearcher", "fuse_results", "normalize_scores"]
