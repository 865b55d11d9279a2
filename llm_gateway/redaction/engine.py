"""PII masking for audit records and log lines.

Masks email addresses, phone numbers and long digit runs (card or account
numbers) before prompts and completions leave the serving path.  The
replacement tokens are stable so downstream log analysis can still count
what was masked.
"""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class RedactionPattern:
    name: str
    regex: re.Pattern[str]
    replacement: str


# Applied in order; email runs first so its digits are not re-matched as a phone.
_CORE_PATTERNS: tuple[RedactionPattern, ...] = (
    RedactionPattern(
        name="email",
        regex=re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"),
        replacement="[EMAIL]",
    ),
    RedactionPattern(
        name="phone",
        regex=re.compile(r"\b0\d{1,4}-?\d{1,4}-?\d{4}\b"),
        replacement="[PHONE]",
    ),
    RedactionPattern(
        name="number",
        regex=re.compile(r"\b\d{13,16}\b"),
        replacement="[NUMBER]",
    ),
)


@dataclass
class TextRedactionResult:
    text: str
    redaction_count: int


@dataclass
class RedactionResult:
    messages: list[dict[str, str]]
    redaction_count: int


class RedactionEngine:
    def __init__(self, extra_patterns: tuple[RedactionPattern, ...] = ()) -> None:
        self._patterns = _CORE_PATTERNS + extra_patterns

    @property
    def pattern_count(self) -> int:
        return len(self._patterns)

    def redact_text(self, text: str) -> TextRedactionResult:
        redacted = text
        hit_count = 0
        for pattern in self._patterns:
            redacted, substitutions = pattern.regex.subn(pattern.replacement, redacted)
            hit_count += substitutions
        return TextRedactionResult(text=redacted, redaction_count=hit_count)

    def redact_messages(self, messages: list[dict[str, str]]) -> RedactionResult:
        """Redact every message content, keeping roles untouched."""
        redacted_messages: list[dict[str, str]] = []
        total_hits = 0
        for message in messages:
            result = self.redact_text(message["content"])
            total_hits += result.redaction_count
            redacted_messages.append({"role": message["role"], "content": result.text})
        return RedactionResult(messages=redacted_messages, redaction_count=total_hits)
