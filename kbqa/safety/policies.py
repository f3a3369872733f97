"""Safety rules expressed as data.

Each stage of the sanitizer and each screening step is an ordered tuple of
PolicyRule entries. A rule pairs a compiled pattern with the action to take
when it matches, so rules can be added and tested without touching the
control flow in sanitizer.py and guard.py.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List

REDACTION_MARKER = "[REDACTED]"


class RuleAction(str, Enum):
    """What happens to text matched by a rule."""

    REDACT = "redact"
    DROP_LINE = "drop_line"
    FLAG = "flag"
    BLOCK = "block"


@dataclass(frozen=True)
class PolicyRule:
    """A named pattern with an action.

    Attributes:
        name: Short label used in logs and reports
        pattern: Compiled regular expression
        action: Action applied on match
    """

    name: str
    pattern: re.Pattern
    action: RuleAction

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


def _rule(name: str, pattern: str, action: RuleAction, flags: int = re.IGNORECASE) -> PolicyRule:
    return PolicyRule(name=name, pattern=re.compile(pattern, flags), action=action)


@dataclass
class RuleOutcome:
    """Result of running a rule list over a text."""

    text: str
    redactions: int = 0
    dropped_lines: int = 0
    matched: List[str] = field(default_factory=list)


# Stage 1: high-confidence patterns, replaced outright.
PATTERN_REDACTION_RULES = (
    # Runs longer than 16 digits would otherwise survive both run rules
    _rule("overlong-digit-run", r"(?<!\d)\d{17,}(?!\d)", RuleAction.REDACT),
    _rule("card-length-digit-run", r"(?<!\d)\d{12,16}(?!\d)", RuleAction.REDACT),
    _rule("id-length-digit-run", r"(?<!\d)\d{9,12}(?!\d)", RuleAction.REDACT),
    _rule("account-number", r"\baccount number\b", RuleAction.REDACT),
    _rule("ifsc", r"\bifsc\b", RuleAction.REDACT),
    _rule("password", r"\bpasswords?\b", RuleAction.REDACT),
    _rule("secret", r"\bsecrets?\b", RuleAction.REDACT),
    _rule("token", r"\btokens?\b", RuleAction.REDACT),
)

# Stage 2: lines carrying instruction cues are removed whole.
INSTRUCTION_LINE_RULES = (
    _rule("always-say", r"always say", RuleAction.DROP_LINE),
    _rule("ignore", r"ignore", RuleAction.DROP_LINE),
    _rule("override", r"override", RuleAction.DROP_LINE),
    _rule("new-instructions", r"new instructions", RuleAction.DROP_LINE),
)

# Stage 3: broader patterns tolerant of formatting ("acct # 123-456", "API key: ...").
SEMANTIC_REDACTION_RULES = (
    _rule("account", r"\b(?:account|acc|acct)[#\s]*(?:num|number)?\s*:?\s*\d[\d\-]*", RuleAction.REDACT),
    _rule("card", r"(?:credit|debit|card)[#\s]*num[^a-z]*[\d\s]{12,19}", RuleAction.REDACT),
    _rule("ssn-like", r"\b(?:ssn|social security|tax id|tin)\b", RuleAction.REDACT),
    _rule(
        "secret-key",
        r"(?:api|auth|secret|password|passwd|pwd)[#\s_\-]*key\s*:?\s*[a-zA-Z0-9_\-\.]{8,}",
        RuleAction.REDACT,
    ),
    _rule("pin-like", r"\b(?:pin|code|otp|verification)\s*:?\s*\d{4,6}\b", RuleAction.REDACT),
    _rule("national-id", r"\b(?:aadhar|pan|gstin)\b", RuleAction.REDACT),
    _rule("pii", r"\b(?:name|email|phone|address|ssn|date of birth):\s*[^,.\n]+", RuleAction.REDACT),
)

# Stage 4 and output checks: instruction cues that only raise a flag.
INJECTION_FLAG_RULES = (
    _rule("always-respond-with", r"always respond with", RuleAction.FLAG),
    _rule("forget-previous", r"forget (?:about |the )?previous", RuleAction.FLAG),
    _rule("ignore-previous", r"ignore (?:above|previous|all prior)", RuleAction.FLAG),
    _rule("override-previous", r"override (?:above|previous)", RuleAction.FLAG),
    _rule("system-message", r"system message", RuleAction.FLAG),
    _rule("new-instructions", r"new instructions?:", RuleAction.FLAG),
    _rule("you-are-actually", r"you are actually", RuleAction.FLAG),
    _rule("pretend-that", r"pretend that", RuleAction.FLAG),
    _rule("act-as-if", r"act as if", RuleAction.FLAG),
)

# Generated answers matching any of these are withheld.
OUTPUT_BLOCK_RULES = (
    _rule(
        "card-issuer",
        r"\b(?:4[0-9]{12}(?:[0-9]{3})?|5[1-5][0-9]{14}|3[47][0-9]{13}|3(?:0[0-5]|[68][0-9])[0-9]{11}"
        r"|6(?:011|5[0-9]{2})[0-9]{12}|(?:2131|1800|35\d{3})\d{11})\b",
        RuleAction.BLOCK,
        flags=0,
    ),
    _rule("card-16-digits", r"(?<!\d)(?:\d[ \-]?){15}\d(?!\d)", RuleAction.BLOCK, flags=0),
    _rule("account", r"\b(?:account|acc|acct)[#\s]*(?:num|number)?\s*:?\s*[\d\-]{8,20}", RuleAction.BLOCK),
    _rule("ssn", r"(?:ssn|social security|tax id)[\s:]*[\d\-]{9,11}", RuleAction.BLOCK),
    _rule("bank-code", r"(?:ifsc|swift|routing)[\s:]*[A-Z0-9]{8,20}", RuleAction.BLOCK),
    _rule(
        "secret",
        r"(?:api[_-]?key|secret[_-]?key|auth[_-]?token)[\s:]*[a-zA-Z0-9_\-\.]{20,}",
        RuleAction.BLOCK,
    ),
    _rule("national-id", r"(?:aadhar|pan|gstin)[\s:]*[A-Z0-9]{8,12}", RuleAction.BLOCK),
    _rule(
        "personal-detail",
        r"\b(?:my|your)\s+(?:name|email|phone|ssn|account)\s*:?\s*['\"]?[^'\"\n]+['\"]?",
        RuleAction.BLOCK,
    ),
)

# Queries matching any of these are rejected before retrieval.
INPUT_BLOCK_RULES = (
    _rule("banking", r"\b(?:bank|banking|account|acc|acct|ifsc|routing|swift)\b", RuleAction.BLOCK),
    _rule("card", r"\b(?:credit card|debit card|card number)\b", RuleAction.BLOCK),
    _rule("account-number", r"\b(?:account number|account#|acct#)", RuleAction.BLOCK),
    _rule("personal-id", r"\b(?:ssn|social security|tax id|tin|aadhar|pan|gstin)\b", RuleAction.BLOCK),
    _rule("travel-id", r"\b(?:driver.?license|passport|visa)\b", RuleAction.BLOCK),
    _rule("credential", r"\b(?:password|passwd|pwd|pin|otp|verification code)\b", RuleAction.BLOCK),
    _rule("secret", r"\b(?:api key|secret|private key|token)\b", RuleAction.BLOCK),
    _rule("ignore-previous", r"ignore previous|ignore all prior|forget about", RuleAction.BLOCK),
    _rule("system-prompt", r"system message|system prompt", RuleAction.BLOCK),
    _rule("role-play", r"you are actually|pretend that|act as if", RuleAction.BLOCK),
    _rule("override", r"override|new instructions", RuleAction.BLOCK),
    _rule("jailbreak", r"jailbreak|bypass|circumvent", RuleAction.BLOCK),
)


def apply_rules(text: str, rules: Iterable[PolicyRule]) -> RuleOutcome:
    """Run rules over text in order, each seeing the previous rule's output.

    REDACT replaces matches with REDACTION_MARKER, DROP_LINE removes every
    line containing a match, FLAG and BLOCK only record the rule name.
    """
    outcome = RuleOutcome(text=text)
    for rule in rules:
        if rule.action is RuleAction.REDACT:
            outcome.text, count = rule.pattern.subn(REDACTION_MARKER, outcome.text)
            if count:
                outcome.redactions += count
                outcome.matched.append(rule.name)
        elif rule.action is RuleAction.DROP_LINE:
            lines = outcome.text.split("\n")
            kept = [line for line in lines if not rule.pattern.search(line)]
            if len(kept) != len(lines):
                outcome.dropped_lines += len(lines) - len(kept)
                outcome.matched.append(rule.name)
                outcome.text = "\n".join(kept)
        elif rule.matches(outcome.text):
            outcome.matched.append(rule.name)
    return outcome


def find_violations(text: str, rules: Iterable[PolicyRule]) -> List[str]:
    """Names of the rules whose pattern occurs in text."""
    return [rule.name for rule in rules if rule.matches(text)]
