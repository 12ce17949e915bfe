"""
Token counting and usage tracking.

Holds provider-reported token counts and the rough estimate used for
admission decisions.
"""

import math
from dataclasses import dataclass
from typing import Optional


CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.

    Contains exact token counts as reported by the provider.
    """
    prompt_tokens: int
    completion_tokens: int

    def __post_init__(self):
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValueError("token counts cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def approximate_token_count(text: Optional[str]) -> int:
    """Estimate tokens as one per four characters, rounded up.

    This is an approximation, not the provider's tokenizer. Admission checks
    run on it; billing always uses the provider-reported counts.
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)
