"""Context building for RAG prompts."""

from typing import List, Sequence

from kbqa.domain.results import RankedResult


class ContextBuilder:
    """Builds formatted context from fused search results.

    Formats results as numbered source blocks, drops results below the
    minimum score, and keeps the text within a character budget.

    Attributes:
        max_length: Maximum characters for context (default: 12000)
        min_score: Minimum fused score for a result to be used (default: 0.25)
    """

    def __init__(self, max_length: int = 12000, min_score: float = 0.25):
        """Initialize ContextBuilder.

        Args:
            max_length: Maximum context length in characters
            min_score: Results with a lower final score are skipped
        """
        self.max_length = max_length
        self.min_score = min_score

    def select(self, results: Sequence[RankedResult]) -> List[RankedResult]:
        """Results that clear the minimum score, in their original order."""
        return [r for r in results if r.final_score >= self.min_score]

    def build_context(self, results: Sequence[RankedResult]) -> str:
        """Build formatted context from results.

        Results are expected to be filtered and ranked already. Higher
        ranked results take the budget first.

        Args:
            results: Ranked results to include

        Returns:
            "Source i (path):" blocks separated by blank lines
        """
        if not results:
            return ""

        context_parts: List[str] = []
        current_length = 0

        for i, result in enumerate(results, 1):
            block = self._format_result(i, result)
            # Account for the separator between blocks
            separator = 2 if context_parts else 0

            if current_length + separator + len(block) > self.max_length:
                remaining = self.max_length - current_length - separator
                if remaining > 100:  # Only truncate if we have meaningful space
                    truncated = self._truncate_result(i, result, remaining)
                    if truncated:
                        context_parts.append(truncated)
                break

            context_parts.append(block)
            current_length += separator + len(block)

        return "\n\n".join(context_parts)

    @staticmethod
    def _header(position: int, result: RankedResult) -> str:
        return f"Source {position} ({result.source_path or 'unknown'}):"

    def _format_result(self, position: int, result: RankedResult) -> str:
        return f"{self._header(position, result)}\n{result.content.strip()}"

    def _truncate_result(self, position: int, result: RankedResult, max_chars: int) -> str | None:
        """Truncate a result to fit within budget, or None if it can't fit."""
        header = self._header(position, result)
        # Header, newline and ellipsis
        available = max_chars - len(header) - 4

        if available < 50:  # Too short to be useful
            return None

        content = result.content.strip()
        truncated = content[:available]
        if len(content) > available:
            truncated += "..."
        return f"{header}\n{truncated}"
