"""Interfaces of the services the engine consumes but does not own."""

from __future__ import annotations

from typing import Any, Protocol

from .models import ActionInfo, CompanionState, Goal, Interest


class ProfileSummaryProvider(Protocol):
    """Produces the long-form background summary of a user."""

    async def get_summary(self, user_id: str, session_id: str) -> str | None: ...


class UserStateProvider(Protocol):
    """User-owned state: standing directive, goals and interests."""

    async def get_standing_directive(self, user_id: str) -> str | None: ...

    async def get_goals(self, user_id: str) -> list[Goal | dict[str, Any]]: ...

    async def get_interests(self, user_id: str) -> list[Interest | dict[str, Any]]: ...


class CompanionStateProvider(Protocol):
    """The companion's own goals, focus areas and emotion."""

    async def get_companion_state(
        self, user_id: str
    ) -> CompanionState | dict[str, Any] | None: ...


class ActionCatalog(Protocol):
    """Actions the companion can suggest or perform."""

    def list_actions(self) -> list[ActionInfo | dict[str, Any]]: ...


class TextGenerator(Protocol):
    """Auxiliary LLM used for summaries."""

    async def generate(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int = 150,
        temperature: float = 0.4,
    ) -> str: ...
