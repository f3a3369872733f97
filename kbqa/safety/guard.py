"""Screening of user queries and generated answers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from kbqa.errors import PolicyViolationError
from kbqa.safety.policies import (
    INJECTION_FLAG_RULES,
    INPUT_BLOCK_RULES,
    OUTPUT_BLOCK_RULES,
    find_violations,
)

logger = logging.getLogger(__name__)

BLOCKED_RESPONSE_MESSAGE = (
    "WARNING: This response was blocked because it contains sensitive "
    "information that should not be shared."
)

POLICY_REFUSAL_MESSAGE = (
    "This request cannot be processed because it asks for restricted or sensitive information."
)


@dataclass
class OutputScreening:
    """Outcome of screening a generated answer.

    Attributes:
        blocked: Answer must be replaced with BLOCKED_RESPONSE_MESSAGE
        violations: Names of the block rules that matched
        injection_flagged: Answer echoes instruction cues (logged only)
    """

    blocked: bool = False
    violations: List[str] = field(default_factory=list)
    injection_flagged: bool = False

    def visible_text(self, text: str) -> str:
        """Text that may be shown or persisted for this answer."""
        return BLOCKED_RESPONSE_MESSAGE if self.blocked else text


def screen_output(text: str) -> OutputScreening:
    """Check a completed answer for sensitive content.

    The blocked text itself is never logged.
    """
    violations = find_violations(text, OUTPUT_BLOCK_RULES)
    injection = bool(find_violations(text, INJECTION_FLAG_RULES))

    if violations:
        logger.warning(
            "output policy violation: length=%d rules=%s", len(text), ",".join(violations)
        )
    if injection:
        logger.warning("output contains instruction cues: length=%d", len(text))

    return OutputScreening(
        blocked=bool(violations), violations=violations, injection_flagged=injection
    )


def screen_input(query: str) -> None:
    """Reject queries asking for restricted information.

    Raises:
        PolicyViolationError: If any input block rule matches
    """
    violations = find_violations(query, INPUT_BLOCK_RULES)
    if violations:
        logger.warning("blocked input: length=%d rules=%s", len(query), ",".join(violations))
        raise PolicyViolationError(POLICY_REFUSAL_MESSAGE, violations=violations)
