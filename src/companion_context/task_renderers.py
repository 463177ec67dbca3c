"""Type-specific rendering of the active task for the prompt."""

from __future__ import annotations

from typing import Any

from loguru import logger

from .collaborators import TextGenerator
from .context_formatters import format_board
from .models import ActiveTask, TaskType

FOCUS_LINE = (
    "Focus your response on continuing the activity unless the user clearly "
    "indicates otherwise."
)


def _task_state(task: ActiveTask) -> dict[str, Any]:
    data = task.state.get("data")
    return data if isinstance(data, dict) else task.state


def _event_text(event: Any) -> str:
    if isinstance(event, dict):
        return f"{event.get('event', '')} ({event.get('mood') or 'neutral'} mood)"
    return str(event)


def condense_events(events: list[Any]) -> str:
    """One-sentence summary of older events without a model."""
    texts = [
        e.get("event", "") if isinstance(e, dict) else str(e) for e in events
    ]
    texts = [t for t in texts if t]
    if not texts:
        return f"{len(events)} earlier events took place"
    if len(texts) == 1:
        return texts[0]
    return (
        f"{len(texts)} earlier events took place, starting with {texts[0]} "
        f"and most recently {texts[-1]}"
    )


class TaskRenderer:
    """Renders roleplay, game and brainstorm state.

    Roleplay event logs longer than ``recent_events`` get their older part
    summarized by the TextGenerator when one is configured, and condensed
    heuristically otherwise.
    """

    def __init__(self, generator: TextGenerator | None = None, recent_events: int = 20):
        self._generator = generator
        self.recent_events = recent_events

    async def render(self, task: ActiveTask) -> str:
        """Render the body of the ``## Current Activity`` section."""
        lines = ""
        if task.goal:
            lines += f"Activity Goal: {task.goal}\n"
        if task.user_goal:
            lines += f"Your Goal (User): {task.user_goal}\n"
        if task.assistant_goal:
            lines += f"My Goal (Assistant): {task.assistant_goal}\n"

        state = _task_state(task)
        if task.type == TaskType.ROLEPLAY:
            lines += await self.render_roleplay(state)
        elif task.type == TaskType.GAME:
            lines += self.render_game(state)
        elif task.type == TaskType.BRAINSTORM:
            lines += self.render_brainstorm(state)
        elif state:
            details = ", ".join(f"{k}: {v}" for k, v in state.items())
            lines += f"Activity State: {details}\n"

        return lines + FOCUS_LINE

    async def render_roleplay(self, state: dict[str, Any]) -> str:
        setting = state.get("setting")
        result = "Roleplay State:\n"
        result += f"  Scenario: {state.get('scenario') or 'Not set'}\n"
        result += f"  Setting: {setting or 'Not set'}\n"
        result += (
            f"  Current Location: "
            f"{state.get('current_location') or setting or 'Not specified'}\n"
        )
        result += f"  Current Scene: {state.get('current_scene') or 'Not set'}\n"
        result += f"  Overall Mood: {state.get('mood') or 'Neutral'}\n"

        characters = state.get("characters") or []
        if characters:
            result += "  Characters Present/Relevant:\n"
            for char in characters:
                if not isinstance(char, dict):
                    result += f"    - {char}\n"
                    continue
                line = f"    - {char.get('name', 'Unknown')}"
                if char.get("role"):
                    line += f" ({char['role']})"
                if char.get("goal"):
                    line += f" [Goal: {char['goal']}]"
                if char.get("status"):
                    line += f" [Status: {char['status']}]"
                if char.get("mood"):
                    line += f" [Mood: {char['mood']}]"
                result += line + "\n"

        result += f"  {await self._render_events(state)}\n"
        return result

    async def _render_events(self, state: dict[str, Any]) -> str:
        recent = [str(e) for e in state.get("recent_events") or []]
        event_log = list(state.get("event_log") or [])
        recent_text = "; ".join(recent[-self.recent_events :])

        if len(event_log) > self.recent_events:
            older = event_log[: len(event_log) - self.recent_events]
            summary = await self._summarize_older(older)
            return f"Previously: {summary}. Recently: {recent_text}"
        if recent:
            return f"Recent Events: {recent_text}"
        return "Recent Events: None recorded yet."

    async def _summarize_older(self, events: list[Any]) -> str:
        if self._generator is not None:
            listing = "\n".join(f"- {_event_text(e)}" for e in events)
            prompt = (
                "Summarize the following sequence of past roleplay events into "
                "a very brief, single sentence (max 25 words):\n\n"
                f"Events:\n{listing}\n\nBrief Summary:"
            )
            try:
                text = await self._generator.generate(
                    prompt,
                    system="You are an expert summarizer.",
                    max_tokens=80,
                    temperature=0.4,
                )
                text = (text or "").strip().replace("\n", " ").rstrip(".")
                if text:
                    return text
            except Exception as e:
                logger.warning(f"Roleplay event summary failed: {e}")
        return condense_events(events)

    @staticmethod
    def render_game(state: dict[str, Any]) -> str:
        result = (
            f"Game State ({state.get('game_type') or 'unknown'}): "
            f"Current Player: {state.get('current_player') or '?'}. "
            f"Winner: {state.get('winner') or 'None'}.\n"
        )
        board = state.get("board")
        if isinstance(board, list) and len(board) == 3:
            result += "Board:\n" + format_board(board)
        if state.get("score") is not None:
            result += f"Score: {state['score']}\n"
        return result

    @staticmethod
    def render_brainstorm(state: dict[str, Any]) -> str:
        ideas = state.get("ideas") or []
        return (
            f"Brainstorm State: Topic: {state.get('topic') or 'Not set'}. "
            f"Phase: {state.get('phase') or 'Not set'}. "
            f"Ideas generated: {len(ideas)}.\n"
        )
