"""Context sanitization and input/output screening."""

from kbqa.safety.guard import (
    BLOCKED_RESPONSE_MESSAGE,
    OutputScreening,
    screen_input,
    screen_output,
)
from kbqa.safety.policies import REDACTION_MARKER, PolicyRule, RuleAction, apply_rules
from kbqa.safety.sanitizer import ContextSanitizer, SafetyReport, SanitizedContext

__all__ = [
    "BLOCKED_RESPONSE_MESSAGE",
    "ContextSanitizer",
    "OutputScreening",
    "PolicyRule",
    "REDACTION_MARKER",
    "RuleAction",
    "SafetyReport",
    "SanitizedContext",
    "apply_rules",
    "screen_input",
    "screen_output",
]
