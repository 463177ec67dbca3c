"""Conversation history budgeting and summarization.

``HistoryFormatter`` keeps the newest messages that fit a token budget and
replaces the excluded prefix with one system summary entry produced by a
``HistorySummarizer``.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Any, Iterable, Protocol

from loguru import logger

from .collaborators import TextGenerator
from .config import HistoryConfig
from .models import ChatMessage
from .token_counter import TokenCounter

NO_RESPONSE = "[No assistant response]"
SUMMARY_PREFIX = "Summary of earlier conversation: "

_PUNCTUATION = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()?]")
_WHITESPACE = re.compile(r"\s{2,}")

STOP_WORDS = frozenset(
    """
    the and a to of is in that it with for on you are i this what how why can
    will do me my your have has had was were he she they them about as at be
    but by from if or so then up an not just like get go know say see think
    time want way work really some there when which who use make tell here
    thing good new day also back even first give look man more most need only
    other our out people put right should still such take than their these
    through too two us very well where while year said asked replied responded
    mentioned
    """.split()
)


def _content(message: ChatMessage | dict[str, Any]) -> str:
    content = (
        message.get("content") if isinstance(message, dict) else message.content
    )
    return content if isinstance(content, str) else ""


def _role(message: ChatMessage | dict[str, Any]) -> str:
    return message.get("role", "") if isinstance(message, dict) else message.role


def pair_exchanges(
    messages: Iterable[ChatMessage | dict[str, Any]],
) -> list[tuple[str, str]]:
    """Group messages into (user, assistant) exchanges.

    A user message opens an exchange and the next assistant message closes
    it. A user message that arrives while an exchange is still open flushes
    the open one with a placeholder reply. Assistant messages with no open
    exchange and system messages are skipped.
    """
    exchanges: list[tuple[str, str]] = []
    open_user: str | None = None
    for message in messages:
        role = _role(message)
        if role == "user":
            if open_user is not None:
                exchanges.append((open_user, NO_RESPONSE))
            open_user = _content(message)
        elif role == "assistant" and open_user is not None:
            exchanges.append((open_user, _content(message)))
            open_user = None
    if open_user is not None:
        exchanges.append((open_user, NO_RESPONSE))
    return exchanges


class HistorySummarizer(Protocol):
    """Condenses messages excluded from the history window."""

    async def summarize(
        self, messages: list[ChatMessage | dict[str, Any]]
    ) -> str: ...


class HeuristicHistorySummarizer:
    """Deterministic summary built from exchange pairs.

    Short conversations are quoted exchange by exchange; longer ones are
    reduced to their most frequent user-side topic words.
    """

    def __init__(self, config: HistoryConfig | None = None):
        self.config = config or HistoryConfig()

    def _truncate(self, text: str) -> str:
        limit = self.config.truncate_chars
        if len(text) > limit:
            return text[: limit - 3] + "..."
        return text

    def summarize_sync(self, messages: list[ChatMessage | dict[str, Any]]) -> str:
        exchanges = pair_exchanges(messages)
        if not exchanges:
            return "The conversation started recently."
        if len(exchanges) <= self.config.small_conversation_exchanges:
            return " ".join(
                f'Exchange {n}: User said "{self._truncate(user)}". '
                f'Assistant replied "{self._truncate(assistant)}"'
                for n, (user, assistant) in enumerate(exchanges, start=1)
            )
        return self._topics_summary(exchanges)

    def _topics_summary(self, exchanges: list[tuple[str, str]]) -> str:
        text = " ".join(user for user, _ in exchanges).lower()
        text = _WHITESPACE.sub(" ", _PUNCTUATION.sub(" ", text))
        counts = Counter(
            word
            for word in text.split(" ")
            if len(word) >= self.config.min_topic_length and word not in STOP_WORDS
        )
        topics = [word for word, _ in counts.most_common(self.config.top_topics)]
        topic_text = ", ".join(topics) if topics else "various topics"
        return (
            f"The conversation ({len(exchanges)} exchanges) previously "
            f"covered topics like {topic_text}."
        )

    async def summarize(self, messages: list[ChatMessage | dict[str, Any]]) -> str:
        return self.summarize_sync(messages)


class LLMHistorySummarizer:
    """Summarizes via a TextGenerator, falling back to the heuristic."""

    SYSTEM_PROMPT = "You are an expert summarizer."

    def __init__(
        self,
        generator: TextGenerator,
        fallback: HeuristicHistorySummarizer | None = None,
        max_tokens: int = 150,
    ):
        self._generator = generator
        self._fallback = fallback or HeuristicHistorySummarizer()
        self._max_tokens = max_tokens

    async def summarize(self, messages: list[ChatMessage | dict[str, Any]]) -> str:
        transcript = "\n".join(
            f"{_role(m)}: {_content(m)}" for m in messages if _content(m)
        )
        if not transcript:
            return self._fallback.summarize_sync(messages)

        prompt = (
            "Summarize the following conversation in two or three sentences, "
            "keeping names, decisions and open questions.\n\n"
            f"Conversation:\n{transcript}\n\nSummary:"
        )
        try:
            summary = await self._generator.generate(
                prompt,
                system=self.SYSTEM_PROMPT,
                max_tokens=self._max_tokens,
                temperature=0.3,
            )
        except Exception as e:
            logger.warning(f"LLM history summary failed, using heuristic: {e}")
            return self._fallback.summarize_sync(messages)

        summary = (summary or "").strip().replace("\n", " ")
        if not summary:
            return self._fallback.summarize_sync(messages)
        return summary


class HistoryFormatter:
    """Fits conversation history into a token budget."""

    def __init__(
        self,
        summarizer: HistorySummarizer | None = None,
        counter: TokenCounter | None = None,
        config: HistoryConfig | None = None,
    ):
        self.config = config or HistoryConfig()
        self.summarizer = summarizer or HeuristicHistorySummarizer(self.config)
        self.counter = counter or TokenCounter()

    async def format_history(
        self,
        messages: list[ChatMessage | dict[str, Any]],
        token_budget: int | None = None,
    ) -> list[dict[str, str]]:
        """Keep the newest messages that fit, summarizing the rest.

        Args:
            messages: Chronological conversation messages
            token_budget: Token cap for raw entries (defaults to config)

        Returns:
            ``{"role", "content"}`` dicts, oldest first, led by at most one
            system summary entry
        """
        if not messages:
            return []
        budget = (
            token_budget if token_budget is not None else self.config.default_budget_tokens
        )

        kept: list[dict[str, str]] = []
        used = 0
        excluded: list[ChatMessage | dict[str, Any]] = []
        for i in range(len(messages) - 1, -1, -1):
            content = _content(messages[i])
            tokens = self.counter.count(content)
            if used + tokens > budget:
                excluded = list(messages[: i + 1])
                break
            kept.append({"role": _role(messages[i]), "content": content})
            used += tokens
        kept.reverse()

        if excluded:
            summary = await self.summarizer.summarize(excluded)
            kept.insert(0, {"role": "system", "content": f"{SUMMARY_PREFIX}{summary}"})
            logger.debug(
                f"History: kept {len(kept) - 1} messages (~{used} tokens), "
                f"summarized {len(excluded)} older messages"
            )
        return kept
