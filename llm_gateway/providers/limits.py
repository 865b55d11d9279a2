"""Output token clamping against a model family's context window.

Input size is estimated from character counts (half a token per character),
which overestimates for English prose and keeps the clamp on the safe side.
"""

import math
from collections.abc import Iterable
from dataclasses import dataclass

CHARS_TOKEN_RATIO = 0.5
DEFAULT_MAX_TOKENS = 2000


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) * CHARS_TOKEN_RATIO)


def estimate_message_tokens(messages: Iterable[dict[str, str]]) -> int:
    return sum(estimate_tokens(message.get("content", "")) for message in messages)


@dataclass(frozen=True)
class ContextBudget:
    window: int
    margin: int
    min_tokens: int

    def clamp(
        self,
        requested: int | None,
        input_tokens: int,
        default: int = DEFAULT_MAX_TOKENS,
    ) -> int:
        """Return the max output tokens to send upstream.

        Never less than ``min_tokens``, even when the input already fills the
        window; the provider rejects such requests on its own terms.
        """
        wanted = requested if requested is not None else default
        available = self.window - input_tokens - self.margin
        return max(self.min_tokens, min(wanted, available))


OPENAI_STANDARD_BUDGET = ContextBudget(window=32_000, margin=1_000, min_tokens=1_000)
OPENAI_REASONING_BUDGET = ContextBudget(window=128_000, margin=1_000, min_tokens=4_000)
ANTHROPIC_BUDGET = ContextBudget(window=8_192, margin=500, min_tokens=1_000)
