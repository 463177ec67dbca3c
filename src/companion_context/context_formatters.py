"""Natural-language rendering of context items, grouped by type.

``generate_context_summary`` groups live items by type, renders each group
under a ``## <Heading>`` line and joins the groups in first-seen order.
Items are expected newest first, so single-valued types (time, weather,
location) render their most recent item.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Iterable

from pydantic import BaseModel

from .models import ContextItem, ContextType
from .payloads import (
    ActionPayload,
    ActivityPayload,
    CompanionEmotionPayload,
    CustomPayload,
    EngagementSuggestionPayload,
    LocationPayload,
    NotePayload,
    ReasoningPayload,
    SocialPayload,
    ThinkingPayload,
    ThoughtLoopPayload,
    TimePayload,
    UserDesirePayload,
    UserEmotionPayload,
    WeatherPayload,
)

CONTEXT_HEADINGS: dict[ContextType, str] = {
    ContextType.TIME: "Time Context",
    ContextType.WEATHER: "Weather Context",
    ContextType.LOCATION: "Location Context",
    ContextType.EMOTION: "Emotional Context",
    ContextType.PRODUCTIVITY: "User Notes & Tasks",
    ContextType.SOCIAL: "Social Context",
    ContextType.CUSTOM: "Additional Context",
    ContextType.ACTIVITY: "Activity Context",
    ContextType.AI_THINKING: "My Insight & Thoughts",
}

MAX_NOTES = 3
NOTE_CONTENT_CHARS = 100
MAX_LISTED = 3
MAX_PATTERNS = 2


def _num(value: float | int) -> str:
    """Render 21.0 as "21" and 21.5 as "21.5"."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _payloads(items: Iterable[ContextItem], model: type[BaseModel]) -> list[Any]:
    return [item.data for item in items if isinstance(item.data, model)]


def _stringify(data: dict[str, Any]) -> str:
    text = json.dumps(data, default=str)
    for char in '{}"':
        text = text.replace(char, "")
    return text.replace(",", ", ")


# ---------------------------------------------------------------------------
# Per-type formatters
# ---------------------------------------------------------------------------


def format_time(payload: TimePayload) -> str:
    return (
        f"It is currently {payload.local_time} ({payload.time_of_day}) "
        f"on {payload.day_of_week}, {payload.date}."
    )


def format_weather(payload: WeatherPayload) -> str:
    result = (
        f"The weather in {payload.location} is {payload.condition} "
        f"with a temperature of {_num(payload.temperature)}°C"
    )
    if payload.humidity:
        result += f" and {_num(payload.humidity)}% humidity"
    if payload.wind_speed:
        result += f". Wind speed is {_num(payload.wind_speed)} km/h"
    return result + "."


def format_location(payload: LocationPayload) -> str:
    result = f"User is located in {payload.city}, {payload.country}"
    if payload.neighborhood:
        result += f" ({payload.neighborhood})"
    if payload.timezone:
        result += f" in timezone {payload.timezone}"
    return result + "."


def format_emotion(items: list[ContextItem]) -> str:
    result = ""
    user_emotions = _payloads(items, UserEmotionPayload)
    if user_emotions:
        emotion = user_emotions[0]
        result += (
            f"User appears to be feeling {emotion.primary_emotion} "
            f"(intensity: {emotion.intensity}/10)"
        )
        if emotion.secondary_emotion:
            result += f" with undertones of {emotion.secondary_emotion}"
        if emotion.detection_method:
            result += f", detected via {emotion.detection_method}"
        result += ".\n"

    companion_emotions = _payloads(items, CompanionEmotionPayload)
    if companion_emotions:
        emotion = companion_emotions[0]
        result += f"You (the assistant) are feeling {emotion.emotion}"
        if emotion.reason:
            result += f" because {emotion.reason}"
        result += "."
    return result


def format_notes(items: list[ContextItem]) -> str:
    notes = _payloads(items, NotePayload)
    if not notes:
        return ""
    result = "Recent user notes:\n"
    for note in notes[:MAX_NOTES]:
        content = note.content
        if len(content) > NOTE_CONTENT_CHARS:
            content = f"{content[:NOTE_CONTENT_CHARS]}..."
        result += f"- {note.title or 'Untitled'}: {content}\n"
    return result


def format_actions(payload: ActionPayload) -> str:
    result = ""
    if payload.recent_actions:
        result += "Recent actions:\n"
        for action in payload.recent_actions[:MAX_LISTED]:
            failed = " (failed)" if action.success is False else ""
            result += f"- {action.name}{failed}\n"
        result += "\n"
    if payload.suggested_actions:
        result += "Suggested actions:\n"
        for action in payload.suggested_actions[:MAX_LISTED]:
            result += f"- {action.name}: {action.description}\n"
    return result


def format_social(payload: SocialPayload) -> str:
    result = ""
    if payload.connection_count is not None:
        result += f"User has {payload.connection_count} connection(s)"
        if payload.recent_interactions is not None:
            result += f" with {payload.recent_interactions} recent interaction(s)"
        result += ".\n"
    if payload.matches:
        result += "Recent matches:\n"
        for match in payload.matches[:MAX_LISTED]:
            result += f"- {match.name} ({_num(match.score)}% compatibility)\n"
    return result


def _info_line(item: ContextItem) -> str:
    data = item.data
    if isinstance(data, CustomPayload):
        if data.description:
            return data.description
        if data.content:
            return data.content
        if data.value:
            return f"{data.key or 'Value'}: {data.value}"
        return _stringify(data.extra)
    if isinstance(data, EngagementSuggestionPayload):
        if data.reason:
            return f"{data.suggestion} ({data.reason})"
        return data.suggestion
    return _stringify(data.model_dump(exclude={"kind"}, exclude_none=True))


def format_custom(items: list[ContextItem]) -> str:
    """Render CUSTOM items.

    Order: the latest stated user desire, recurring thought patterns,
    reasoning patterns, other free-form lines, then action context.
    """
    result = ""

    desires = [item for item in items if isinstance(item.data, UserDesirePayload)]
    if desires:
        latest = max(desires, key=lambda item: item.data.timestamp)
        result += "USER'S STATED DESIRES ABOUT THE COMPANION:\n"
        result += f'"{latest.data.statement}"\n\n'

    loops = [
        item
        for item in items
        if isinstance(item.data, ThoughtLoopPayload)
        or item.source == "thought-loop-detection"
        or item.flag("is_thought_loop")
    ]
    if loops:
        result += "Recurring thought patterns:\n"
        for item in loops[:MAX_PATTERNS]:
            data = item.data
            if isinstance(data, ThoughtLoopPayload):
                result += f"- {data.pattern} (intensity: {data.intensity}/10)\n"
            else:
                result += f"- {_info_line(item)}\n"
        result += "\n"

    reasoning = [
        item
        for item in items
        if id(item) not in {id(loop) for loop in loops}
        and (
            isinstance(item.data, ReasoningPayload)
            or item.source == "reasoning"
            or item.flag("is_reasoning")
        )
    ]
    if reasoning:
        result += "User reasoning patterns:\n"
        for item in reasoning[:MAX_PATTERNS]:
            data = item.data
            if isinstance(data, ReasoningPayload):
                result += f"- {data.pattern or data.description}\n"
            else:
                result += f"- {_info_line(item)}\n"
        result += "\n"

    actions = [item for item in items if isinstance(item.data, ActionPayload)]
    handled = {id(item) for item in desires + loops + reasoning + actions}
    others = [item for item in items if id(item) not in handled]
    if others:
        result += "Additional context:\n"
        for item in others[:MAX_LISTED]:
            result += f"- {_info_line(item)}\n"

    if actions:
        if others:
            result += "\n"
        result += format_actions(actions[0].data)
    return result


def _activity_state(payload: ActivityPayload) -> dict[str, Any]:
    data = payload.state.get("data")
    return data if isinstance(data, dict) else payload.state


def format_board(board: list[list[Any]]) -> str:
    """Render a 3x3 board with " | " separators between cells."""
    lines = []
    for i, row in enumerate(board[:3]):
        cells = [str(cell) if cell else " " for cell in list(row)[:3]]
        lines.append("  " + " | ".join(cells))
        if i < 2:
            lines.append("  ---------")
    return "\n".join(lines) + "\n"


def format_activity(payload: ActivityPayload) -> str:
    result = (
        f"Current Activity: {payload.activity_name or 'Unknown'} "
        f"(Type: {payload.activity_type or 'Unknown'})\n"
    )
    state = _activity_state(payload)

    if payload.activity_type == "roleplay":
        result += f"Scenario: {state.get('scenario') or 'Roleplay session'}\n"
        characters = state.get("characters") or []
        if characters:
            result += "Characters:\n"
            for char in characters:
                if isinstance(char, dict):
                    result += f"- {char.get('name')}: {char.get('description', '')}\n"
                else:
                    result += f"- {char}\n"
    elif payload.activity_type == "game":
        game_type = payload.parameters.get("game_type") or "Unknown game"
        result += f"Game Type: {game_type}\n"
        board = state.get("board") or []
        if game_type == "tictactoe":
            result += "Game State:\n"
            winner = state.get("winner")
            if winner:
                result += f"Winner: {'Draw' if winner == 'draw' else winner}\n"
            else:
                result += f"Current Player: {state.get('current_player') or '?'}\n"
            if len(board) == 3:
                result += "Board:\n" + format_board(board)

    extra = {
        k: v
        for k, v in payload.parameters.items()
        if k not in ("initial_command", "game_type")
    }
    if extra:
        result += "Parameters:\n"
        for key, value in extra.items():
            result += f"- {key}: {value}\n"
    return result


def format_thinking(items: list[ContextItem]) -> str:
    """Render the most recent meta-thinking item.

    ``my_thoughts`` is used verbatim when present; otherwise a reflective
    block is built from the analysis, subconscious and strategy fields plus
    the top three goals by priority.
    """
    thoughts = [item for item in items if isinstance(item.data, ThinkingPayload)]
    if not thoughts:
        return ""
    latest = thoughts[0]
    thinking: ThinkingPayload = latest.data
    if thinking.my_thoughts:
        return thinking.my_thoughts

    parts = ["As your companion, I've been reflecting on our interaction:"]
    if thinking.analysis:
        prefix = (
            "Based on our conversation, I notice that "
            if latest.flag("use_fallback")
            else ""
        )
        parts.append(f"{prefix}{thinking.analysis}")
    if thinking.subconscious:
        parts.append(f"I sense that {thinking.subconscious}")
    if thinking.strategy:
        parts.append(f"My approach is to {thinking.strategy}")
    if thinking.ai_goals:
        top = sorted(thinking.ai_goals, key=lambda g: g.priority, reverse=True)[:3]
        goals = "\n".join(f"• {g.goal}" for g in top)
        parts.append(f"To support you, I'm focusing on:\n{goals}")
    if len(parts) == 1:
        return ""
    return "\n\n".join(parts)


def _first(items: list[ContextItem], model: type[BaseModel], render: Callable) -> str:
    payloads = _payloads(items, model)
    if payloads:
        return render(payloads[0])
    return format_custom(items)


def _format_group(context_type: ContextType, items: list[ContextItem]) -> str:
    if context_type == ContextType.TIME:
        return _first(items, TimePayload, format_time)
    if context_type == ContextType.WEATHER:
        return _first(items, WeatherPayload, format_weather)
    if context_type == ContextType.LOCATION:
        return _first(items, LocationPayload, format_location)
    if context_type == ContextType.EMOTION:
        return format_emotion(items)
    if context_type == ContextType.PRODUCTIVITY:
        return format_notes(items) or format_custom(items)
    if context_type == ContextType.SOCIAL:
        return _first(items, SocialPayload, format_social)
    if context_type == ContextType.ACTIVITY:
        return _first(items, ActivityPayload, format_activity)
    if context_type == ContextType.AI_THINKING:
        return format_thinking(items)
    return format_custom(items)


def generate_context_summary(
    items: Iterable[ContextItem],
    included_types: Iterable[ContextType] | None = None,
    excluded_types: Iterable[ContextType] | None = None,
) -> str:
    """Render context items as grouped, headed prose.

    Args:
        items: Live context items, newest first
        included_types: Only render these types (all when None or empty)
        excluded_types: Never render these types

    Returns:
        The summary, or "" when nothing renders
    """
    included = set(included_types or ())
    excluded = set(excluded_types or ())

    grouped: dict[ContextType, list[ContextItem]] = {}
    for item in items:
        if included and item.type not in included:
            continue
        if item.type in excluded:
            continue
        grouped.setdefault(item.type, []).append(item)

    blocks = []
    for context_type, group in grouped.items():
        body = _format_group(context_type, group).strip()
        if body:
            blocks.append(f"## {CONTEXT_HEADINGS[context_type]}\n{body}")
    return "\n\n".join(blocks)
