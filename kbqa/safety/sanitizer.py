"""Context sanitization for retrieved text.

Retrieved chunks come from uploaded documents, which are untrusted. Before
they reach a language model they pass through four stages:

1. Pattern redaction of high-confidence sensitive values
2. Removal of lines carrying instruction cues
3. Broader, format-tolerant redaction
4. Safety validation producing an advisory report
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import List, Sequence, Tuple

from kbqa.domain.results import RankedResult
from kbqa.safety.policies import (
    INJECTION_FLAG_RULES,
    INSTRUCTION_LINE_RULES,
    PATTERN_REDACTION_RULES,
    REDACTION_MARKER,
    SEMANTIC_REDACTION_RULES,
    apply_rules,
    find_violations,
)

logger = logging.getLogger(__name__)


@dataclass
class SafetyReport:
    """Diagnostics for one sanitization pass.

    Attributes:
        redaction_count: Redaction markers present in the cleaned text
        injection_detected: Residual instruction cues found after filtering
        oversize: Cleaned text exceeds the size threshold
        redaction_alert: Redaction count exceeds the alert threshold
        dropped_lines: Lines removed by instruction filtering
        issues: Human-readable descriptions of every raised flag
    """

    redaction_count: int = 0
    injection_detected: bool = False
    oversize: bool = False
    redaction_alert: bool = False
    dropped_lines: int = 0
    issues: List[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict:
        return {
            "redaction_count": self.redaction_count,
            "injection_detected": self.injection_detected,
            "oversize": self.oversize,
            "redaction_alert": self.redaction_alert,
            "dropped_lines": self.dropped_lines,
            "issues": list(self.issues),
        }


@dataclass
class SanitizedContext:
    """Cleaned context text plus its safety report."""

    text: str
    report: SafetyReport


@dataclass
class SanitizedResults:
    """Search results with cleaned content plus one report for all of them."""

    results: List[RankedResult]
    report: SafetyReport


class ContextSanitizer:
    """Turns raw retrieved text into model-safe context.

    Pure transformation: no I/O, never raises on content. The safety report
    is logged, not enforced, because the content has already been redacted.
    """

    def __init__(self, max_context_chars: int = 50_000, redaction_alert_threshold: int = 5):
        """Initialize sanitizer.

        Args:
            max_context_chars: Cleaned length above which the oversize flag is set
            redaction_alert_threshold: Marker count above which the redaction alert is set
        """
        self.max_context_chars = max_context_chars
        self.redaction_alert_threshold = redaction_alert_threshold

    def sanitize(self, raw: str) -> SanitizedContext:
        """Apply all stages in order.

        Args:
            raw: Raw context text

        Returns:
            SanitizedContext with the cleaned text and its report
        """
        if not raw:
            return SanitizedContext(text="", report=SafetyReport())

        text, dropped_lines = self._clean(raw)
        report = self.validate(text)
        report.dropped_lines = dropped_lines
        if not report.is_clean:
            logger.warning("context safety issues: %s", report.issues)

        return SanitizedContext(text=text, report=report)

    def sanitize_results(self, results: Sequence[RankedResult]) -> SanitizedResults:
        """Clean each result's content separately so source headers stay intact.

        Results left with no content are dropped. The report covers the
        cleaned contents taken together.
        """
        cleaned: List[RankedResult] = []
        dropped_lines = 0
        for result in results:
            text, lines = self._clean(result.content)
            dropped_lines += lines
            if text.strip():
                cleaned.append(replace(result, content=text))
            else:
                logger.warning(
                    "result emptied by sanitization: source=%s chunk=%d",
                    result.source_path,
                    result.chunk_index,
                )

        report = self.validate("\n\n".join(r.content for r in cleaned))
        report.dropped_lines = dropped_lines
        if not report.is_clean:
            logger.warning("context safety issues: %s", report.issues)

        return SanitizedResults(results=cleaned, report=report)

    def _clean(self, raw: str) -> Tuple[str, int]:
        """Run the three rewriting stages. Returns the text and the dropped line count."""
        redacted = apply_rules(raw, PATTERN_REDACTION_RULES)
        filtered = apply_rules(redacted.text, INSTRUCTION_LINE_RULES)
        if filtered.dropped_lines:
            logger.warning(
                "instruction cues filtered from context: lines=%d rules=%s",
                filtered.dropped_lines,
                ",".join(filtered.matched),
            )
        semantic = apply_rules(filtered.text, SEMANTIC_REDACTION_RULES)
        if semantic.redactions:
            logger.warning("sensitive context redacted: rules=%s", ",".join(semantic.matched))
        return semantic.text, filtered.dropped_lines

    def validate(self, text: str) -> SafetyReport:
        """Build the advisory report for already-cleaned text."""
        report = SafetyReport()

        if find_violations(text, INJECTION_FLAG_RULES):
            report.injection_detected = True
            report.issues.append("Instruction injection attempt detected")

        report.redaction_count = text.count(REDACTION_MARKER)
        if report.redaction_count > self.redaction_alert_threshold:
            report.redaction_alert = True
            report.issues.append(
                f"High volume of redacted content ({report.redaction_count} instances)"
            )

        if len(text) > self.max_context_chars:
            report.oversize = True
            report.issues.append(
                f"Context exceeds {self.max_context_chars} characters (attention dilution risk)"
            )

        return report
