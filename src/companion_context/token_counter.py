"""Length-based token estimation for budget management."""

from __future__ import annotations

import math


class TokenCounter:
    """Counts tokens for budget management.

    Uses the cheap ``ceil(chars / 4)`` estimate everywhere so section budgets
    are deterministic and independent of any tokenizer.
    """

    def __init__(self, chars_per_token: int = 4):
        self.chars_per_token = chars_per_token

    def count(self, text: str | None) -> int:
        """Count tokens in a text string."""
        return math.ceil(len(text or "") / self.chars_per_token)

    def count_messages(self, messages: list[dict]) -> int:
        """Count total content tokens in a list of chat messages."""
        total = 0
        for msg in messages:
            content = msg.get("content", "")
            if isinstance(content, str):
                total += self.count(content)
        return total

    def fit(self, text: str, max_tokens: int) -> str:
        """Truncate text from the end so it fits within ``max_tokens``."""
        if max_tokens <= 0 or not text.strip():
            return ""
        if self.count(text) <= max_tokens:
            return text
        return text[: max_tokens * self.chars_per_token]
