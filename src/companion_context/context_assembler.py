"""Context assembler.

Builds the per-turn system prompt from a fixed pipeline of sections:

1. Persona (never truncated)
2. Standing user directive
3. Current context (live context items)
4. User background summary
5. Relevant memories (greedy fill within the memory budget)
6. Goals & focus
7. User interests (and optionally the companion's)
8. Active task
9. Available actions

Each section after the persona is fitted to its own token budget. A section
whose collaborator is missing or fails is omitted.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .collaborators import (
    ActionCatalog,
    CompanionStateProvider,
    ProfileSummaryProvider,
    UserStateProvider,
)
from .config import PromptConfig
from .context_formatters import generate_context_summary
from .context_registry import ContextRegistry
from .exceptions import CollaboratorError, ValidationError
from .history import HistoryFormatter
from .models import (
    ActionInfo,
    ActiveTask,
    ChatMessage,
    CompanionState,
    Goal,
    Interest,
    RetrievalResult,
)
from .retrieval import RelevanceRetriever, RetrievalOptions
from .task_renderers import TaskRenderer
from .token_counter import TokenCounter

M = TypeVar("M", bound=BaseModel)

PLACEHOLDER_SUMMARIES = frozenset(
    {
        "Summary being generated...",
        "No summary available yet.",
        "Not enough information available about this user yet.",
    }
)


def _num(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


@dataclass
class PromptSection:
    """One rendered prompt section."""

    name: str
    text: str
    tokens: int
    truncated: bool = False


@dataclass
class AssembledPrompt:
    """Result of prompt assembly."""

    sections: list[PromptSection] = field(default_factory=list)
    retrieval: list[RetrievalResult] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n\n".join(section.text for section in self.sections)

    @property
    def total_tokens(self) -> int:
        return sum(section.tokens for section in self.sections)

    def section(self, name: str) -> PromptSection | None:
        for section in self.sections:
            if section.name == name:
                return section
        return None


def validate_list(name: str, value: Any, model: type[M]) -> list[M]:
    """Validate a collaborator payload as a list of ``model``.

    Raises:
        ValidationError: If the value is not a list or an item is malformed
    """
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(name, f"expected a list, got {type(value).__name__}")
    items = []
    for entry in value:
        if isinstance(entry, model):
            items.append(entry)
            continue
        try:
            items.append(model.model_validate(entry))
        except PydanticValidationError as e:
            raise ValidationError(name, str(e)) from e
    return items


class ContextAssembler:
    """Assembles the system prompt within per-section token budgets."""

    def __init__(
        self,
        retriever: RelevanceRetriever,
        registry: ContextRegistry,
        config: PromptConfig | None = None,
        token_counter: TokenCounter | None = None,
        profile_provider: ProfileSummaryProvider | None = None,
        user_state: UserStateProvider | None = None,
        companion_state: CompanionStateProvider | None = None,
        action_catalog: ActionCatalog | None = None,
        task_renderer: TaskRenderer | None = None,
        history: HistoryFormatter | None = None,
    ):
        """Initialize context assembler.

        Args:
            retriever: Memory retriever
            registry: Context registry
            config: Prompt configuration and section budgets
            token_counter: Token estimator
            profile_provider: Source of the user background summary
            user_state: Source of directive, goals and interests
            companion_state: Source of the companion's own state
            action_catalog: Source of available actions
            task_renderer: Active task renderer
            history: Conversation history formatter
        """
        self._retriever = retriever
        self._registry = registry
        self.config = config or PromptConfig()
        self._counter = token_counter or TokenCounter()
        self.profile_provider = profile_provider
        self.user_state = user_state
        self.companion_state = companion_state
        self.action_catalog = action_catalog
        self._task_renderer = task_renderer or TaskRenderer(
            recent_events=self.config.roleplay_recent_events
        )
        self._history = history or HistoryFormatter(counter=self._counter)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def assemble(
        self,
        user_id: str,
        persona: str,
        utterance: str | None = None,
        active_task: ActiveTask | None = None,
        now: datetime | None = None,
    ) -> AssembledPrompt:
        """Assemble the prompt for one turn.

        Args:
            user_id: User the prompt is for
            persona: Base persona text (kept verbatim)
            utterance: Latest user utterance, used as the retrieval query
            active_task: Ongoing activity, used for scoping and rendering
            now: Reference time for the goals section

        Returns:
            AssembledPrompt with the ordered sections and retrieval results

        Raises:
            ValidationError: If a collaborator returns a malformed payload
        """
        now = now or datetime.now(timezone.utc)
        budgets = self.config.budgets
        result = AssembledPrompt()

        persona_text = persona
        if self.config.instructions:
            persona_text = f"{persona}\n\n{self.config.instructions}"
        result.sections.append(
            PromptSection("persona", persona_text, self._counter.count(persona_text))
        )

        directive = await self._ask(
            "user_state.get_standing_directive",
            self.user_state and (lambda: self.user_state.get_standing_directive(user_id)),
        )
        if directive and str(directive).strip():
            self._add(
                result,
                "directive",
                "## What the user wants from you",
                str(directive).strip(),
                budgets.directive,
            )

        self._add(
            result,
            "context_summary",
            "## Current Context",
            await self._context_summary(user_id),
            budgets.context_summary,
        )

        session_id = active_task.id if active_task else "global"
        summary = await self._ask(
            "profile_provider.get_summary",
            self.profile_provider
            and (lambda: self.profile_provider.get_summary(user_id, session_id)),
        )
        if summary and summary.strip() and summary.strip() not in PLACEHOLDER_SUMMARIES:
            self._add(
                result,
                "profile_summary",
                "## User Background Summary",
                summary.strip(),
                budgets.profile_summary,
            )

        await self._add_memories(result, user_id, utterance or "", active_task)

        self._add(
            result,
            "goals",
            "## Goals & Focus",
            await self._goals_section(user_id, now),
            budgets.goals,
        )

        interests, companion_interests = await self._interests(user_id)
        self._add(result, "interests", "## User Interests", interests, budgets.interests)
        if self.config.include_companion_interests:
            self._add(
                result,
                "companion_interests",
                "## AI Companion Interests",
                companion_interests,
                budgets.interests,
            )

        if active_task is not None:
            self._add(
                result,
                "active_task",
                f"## Current Activity: {active_task.name} ({active_task.type.value})",
                await self._task_renderer.render(active_task),
                budgets.active_task,
            )

        self._add(
            result,
            "actions",
            "## Available Actions You Can Suggest/Perform",
            await self._actions_section(),
            budgets.actions,
        )

        logger.info(
            f"Assembled prompt for {user_id}: {len(result.sections)} sections, "
            f"~{result.total_tokens} tokens, {len(result.retrieval)} memories"
        )
        return result

    async def build_prompt(
        self,
        user_id: str,
        persona: str,
        utterance: str | None = None,
        active_task: ActiveTask | None = None,
        now: datetime | None = None,
    ) -> str:
        assembled = await self.assemble(user_id, persona, utterance, active_task, now)
        return assembled.text

    async def format_history(
        self,
        messages: list[ChatMessage | dict[str, Any]],
        token_budget: int | None = None,
    ) -> list[dict[str, str]]:
        return await self._history.format_history(messages, token_budget)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _add(
        self,
        result: AssembledPrompt,
        name: str,
        heading: str,
        body: str,
        budget: int,
    ) -> None:
        """Fit ``body`` to ``budget`` and append it under ``heading``."""
        if not body or not body.strip():
            return
        fitted = self._counter.fit(body, budget)
        if not fitted.strip():
            return
        truncated = fitted != body
        if truncated:
            logger.debug(f"Section '{name}' truncated to {budget} tokens")
        text = f"{heading}\n{fitted}"
        result.sections.append(
            PromptSection(name, text, self._counter.count(text), truncated)
        )

    async def _ask(
        self, name: str, call: Callable[[], Awaitable[Any] | Any] | None
    ) -> Any:
        """Call an optional collaborator; missing or failing means None."""
        if not call:
            return None
        try:
            value = call()
            if inspect.isawaitable(value):
                value = await value
            return value
        except Exception as e:
            logger.warning(f"{CollaboratorError(name, str(e))}; omitting section")
            return None

    async def _context_summary(self, user_id: str) -> str:
        try:
            items = await self._registry.get_context(user_id)
        except Exception as e:
            logger.warning(f"Failed to read context for {user_id}: {e}")
            return ""
        return generate_context_summary(items)

    async def _add_memories(
        self,
        result: AssembledPrompt,
        user_id: str,
        query: str,
        active_task: ActiveTask | None,
    ) -> None:
        if active_task is not None:
            options = RetrievalOptions(
                activity_scope_id=active_task.id, filter_by_activity=True
            )
        else:
            options = RetrievalOptions(filter_by_activity=False)

        try:
            memories = await self._retriever.retrieve(
                user_id, query, self.config.memory_limit, options
            )
        except Exception as e:
            logger.warning(f"Memory retrieval failed for {user_id}: {e}")
            return

        budget = self.config.budgets.memories
        used = 0
        lines: list[str] = []
        for item in memories:
            text = item.content.strip()
            if not text:
                continue
            line = f"- {text} (Relevance: {round(item.score * 100)}%)"
            tokens = self._counter.count(line)
            if used + tokens >= budget:
                break
            lines.append(line)
            used += tokens
            result.retrieval.append(item)

        if not lines:
            return
        text = (
            "## Relevant User Memories & Facts\n"
            + "\n".join(lines)
            + self.config.memory_suffix
        )
        result.sections.append(
            PromptSection("memories", text, self._counter.count(text))
        )
        logger.debug(f"Added {len(lines)} memories (~{used} tokens) for {user_id}")

    async def _companion_state(self, user_id: str) -> CompanionState | None:
        state = await self._ask(
            "companion_state.get_companion_state",
            self.companion_state
            and (lambda: self.companion_state.get_companion_state(user_id)),
        )
        if state is None or isinstance(state, CompanionState):
            return state
        try:
            return CompanionState.model_validate(state)
        except PydanticValidationError as e:
            raise ValidationError("companion_state", str(e)) from e

    async def _goals_section(self, user_id: str, now: datetime) -> str:
        state = await self._companion_state(user_id)
        user_goals = validate_list(
            "goals",
            await self._ask(
                "user_state.get_goals",
                self.user_state and (lambda: self.user_state.get_goals(user_id)),
            ),
            Goal,
        )
        if state is None and not user_goals:
            return ""

        max_goals = self.config.max_goals
        lines = [f"- Current Time: {now.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}"]

        if state is not None:
            if state.last_interaction_at is not None:
                minutes = int((now - state.last_interaction_at).total_seconds() // 60)
                lines.append(
                    f"- Last Interaction: "
                    f"{state.last_interaction_at.strftime('%Y-%m-%d %H:%M:%S')} "
                    f"({minutes} minutes ago)"
                )
            if state.current_emotion is not None:
                emotion = state.current_emotion
                lines.append(
                    f"- Current Emotion: {emotion.emotion} "
                    f"(Intensity: {_num(emotion.intensity)}, "
                    f"Reason: {emotion.reason or 'N/A'})"
                )
            if state.focus_areas:
                topics = ", ".join(
                    f"{fa.topic} (Importance: {_num(fa.importance)})"
                    for fa in state.focus_areas
                )
                lines.append(f"- Current Focus Areas: {topics}")
            lines.extend(self._goal_lines(state.current_goals, "Internal Goal"))

        lines.extend(self._goal_lines(user_goals, "User Goal"))
        if state is not None:
            lines.extend(self._goal_lines(state.ai_internal_goals, "Your Goal"))
        return "\n".join(lines)

    def _goal_lines(self, goals: list[Goal], label: str) -> list[str]:
        top = sorted(goals, key=lambda g: g.priority, reverse=True)
        return [
            f"- {g.goal} ({label} - Priority: {_num(g.priority)}, "
            f"Progress: {_num(g.progress)}%)"
            for g in top[: self.config.max_goals]
        ]

    async def _interests(self, user_id: str) -> tuple[str, str]:
        interests = validate_list(
            "interests",
            await self._ask(
                "user_state.get_interests",
                self.user_state and (lambda: self.user_state.get_interests(user_id)),
            ),
            Interest,
        )
        user_text = "\n".join(
            f"- {i.topic} (Level: {_num(i.level)})" for i in interests
        )

        companion_text = ""
        if self.config.include_companion_interests:
            state = await self._companion_state(user_id)
            if state is not None:
                companion_text = "\n".join(
                    f"- {i.topic} (Level: {_num(i.level)})" for i in state.ai_interests
                )
        return user_text, companion_text

    async def _actions_section(self) -> str:
        actions = validate_list(
            "actions",
            await self._ask(
                "action_catalog.list_actions",
                self.action_catalog and self.action_catalog.list_actions,
            ),
            ActionInfo,
        )
        if not actions:
            return ""
        limit = self.config.max_actions
        lines = [f"- {a.name} ({a.category or 'General'})" for a in actions[:limit]]
        if len(actions) > limit:
            lines.append("- ...and more.")
        lines.append(
            "Only suggest actions when relevant to the user's request or context."
        )
        return "\n".join(lines)
