"""Tests for context item rendering."""

from datetime import datetime, timezone

from companion_context.context_formatters import (
    format_activity,
    format_board,
    format_custom,
    format_emotion,
    format_location,
    format_notes,
    format_social,
    format_thinking,
    format_time,
    format_weather,
    generate_context_summary,
)
from companion_context.models import ContextDuration, ContextItem, ContextType
from companion_context.payloads import (
    ActionPayload,
    ActivityPayload,
    CompanionEmotionPayload,
    CustomPayload,
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


def _item(context_type, data, **kwargs):
    return ContextItem(
        user_id="u1",
        type=context_type,
        duration=ContextDuration.PERMANENT,
        data=data,
        **kwargs,
    )


TIME = TimePayload(
    local_time="14:30",
    time_of_day="afternoon",
    day_of_week="Sunday",
    date="March 01, 2026",
    timestamp=0.0,
)


# ---------------------------------------------------------------------------
# Per-type formatters
# ---------------------------------------------------------------------------


def test_format_time():
    assert format_time(TIME) == (
        "It is currently 14:30 (afternoon) on Sunday, March 01, 2026."
    )


def test_format_weather_with_optional_fields():
    payload = WeatherPayload(
        temperature=21.0, condition="sunny", location="Lisbon", humidity=40, wind_speed=12.5
    )
    assert format_weather(payload) == (
        "The weather in Lisbon is sunny with a temperature of 21°C and 40% humidity. "
        "Wind speed is 12.5 km/h."
    )


def test_format_weather_minimal():
    payload = WeatherPayload(temperature=-3.5, condition="snowy", location="Oslo")
    assert format_weather(payload) == (
        "The weather in Oslo is snowy with a temperature of -3.5°C."
    )


def test_format_location():
    payload = LocationPayload(
        city="Tokyo", country="Japan", neighborhood="Shibuya", timezone="Asia/Tokyo"
    )
    assert format_location(payload) == (
        "User is located in Tokyo, Japan (Shibuya) in timezone Asia/Tokyo."
    )


def test_format_emotion_user_and_companion():
    items = [
        _item(
            ContextType.EMOTION,
            UserEmotionPayload(
                primary_emotion="anxious",
                secondary_emotion="tired",
                intensity=7,
                detection_method="voice",
            ),
        ),
        _item(
            ContextType.EMOTION,
            CompanionEmotionPayload(emotion="concerned", reason="they sound stressed"),
        ),
    ]
    assert format_emotion(items) == (
        "User appears to be feeling anxious (intensity: 7/10) with undertones of "
        "tired, detected via voice.\n"
        "You (the assistant) are feeling concerned because they sound stressed."
    )


def test_format_notes_truncates_and_limits():
    items = [
        _item(ContextType.PRODUCTIVITY, NotePayload(title=f"Note {i}", content="x" * 150))
        for i in range(5)
    ]
    rendered = format_notes(items)
    assert rendered.startswith("Recent user notes:\n")
    assert rendered.count("\n- ") == 3
    assert f"- Note 0: {'x' * 100}...\n" in rendered


def test_format_notes_untitled():
    items = [_item(ContextType.PRODUCTIVITY, NotePayload(content="buy milk"))]
    assert format_notes(items) == "Recent user notes:\n- Untitled: buy milk\n"


def test_format_social():
    payload = SocialPayload(
        connection_count=12,
        recent_interactions=3,
        matches=[{"name": "Ana", "score": 87.0}, {"name": "Ben", "score": 72.5}],
    )
    assert format_social(payload) == (
        "User has 12 connection(s) with 3 recent interaction(s).\n"
        "Recent matches:\n- Ana (87% compatibility)\n- Ben (72.5% compatibility)\n"
    )


# ---------------------------------------------------------------------------
# Custom items
# ---------------------------------------------------------------------------


def test_format_custom_ordering():
    items = [
        _item(ContextType.CUSTOM, CustomPayload(description="User is on vacation")),
        _item(
            ContextType.CUSTOM,
            ThoughtLoopPayload(pattern="Worrying about exams", intensity=6),
            source="thought-loop-detection",
        ),
        _item(
            ContextType.CUSTOM,
            UserDesirePayload(statement="Be more playful", timestamp="2026-03-01T10:00:00"),
        ),
        _item(
            ContextType.CUSTOM,
            UserDesirePayload(statement="Be less formal", timestamp="2026-02-01T10:00:00"),
        ),
        _item(ContextType.CUSTOM, ReasoningPayload(pattern="Thinks in analogies")),
        _item(
            ContextType.CUSTOM,
            ActionPayload(
                recent_actions=[{"name": "set_timer", "success": False}],
                suggested_actions=[{"name": "play_music", "description": "Relax"}],
            ),
        ),
    ]
    assert format_custom(items) == (
        "USER'S STATED DESIRES ABOUT THE COMPANION:\n"
        '"Be more playful"\n\n'
        "Recurring thought patterns:\n"
        "- Worrying about exams (intensity: 6/10)\n\n"
        "User reasoning patterns:\n"
        "- Thinks in analogies\n\n"
        "Additional context:\n"
        "- User is on vacation\n"
        "\n"
        "Recent actions:\n- set_timer (failed)\n\n"
        "Suggested actions:\n- play_music: Relax\n"
    )


def test_format_custom_info_line_fallbacks():
    items = [
        _item(ContextType.CUSTOM, CustomPayload(key="mood", value="calm")),
        _item(ContextType.CUSTOM, CustomPayload(extra={"origin": "sensor"})),
    ]
    assert format_custom(items) == (
        "Additional context:\n- mood: calm\n- origin: sensor\n"
    )


# ---------------------------------------------------------------------------
# Activity and thinking
# ---------------------------------------------------------------------------


def test_format_board():
    board = [["X", "O", ""], ["", "X", ""], ["O", "", "X"]]
    assert format_board(board) == (
        "  X | O |  \n"
        "  ---------\n"
        "    | X |  \n"
        "  ---------\n"
        "  O |   | X\n"
    )


def test_format_tictactoe_activity():
    payload = ActivityPayload(
        activity_id="g1",
        activity_type="game",
        activity_name="Tic Tac Toe",
        state={"data": {"board": [["X", "", ""], ["", "", ""], ["", "", ""]], "current_player": "O"}},
        parameters={"game_type": "tictactoe", "difficulty": "easy"},
    )
    rendered = format_activity(payload)
    assert rendered.startswith("Current Activity: Tic Tac Toe (Type: game)\n")
    assert "Game Type: tictactoe\nGame State:\nCurrent Player: O\nBoard:\n" in rendered
    assert rendered.endswith("Parameters:\n- difficulty: easy\n")


def test_format_tictactoe_draw():
    payload = ActivityPayload(
        activity_id="g1",
        activity_type="game",
        state={"winner": "draw"},
        parameters={"game_type": "tictactoe"},
    )
    assert "Winner: Draw\n" in format_activity(payload)


def test_format_roleplay_activity():
    payload = ActivityPayload(
        activity_id="r1",
        activity_type="roleplay",
        activity_name="Dungeon Crawl",
        state={
            "scenario": "A damp cave",
            "characters": [{"name": "Lyra", "description": "an elven ranger"}, "Goblin"],
        },
        parameters={"initial_command": "start"},
    )
    assert format_activity(payload) == (
        "Current Activity: Dungeon Crawl (Type: roleplay)\n"
        "Scenario: A damp cave\n"
        "Characters:\n- Lyra: an elven ranger\n- Goblin\n"
    )


def test_format_thinking_prefers_my_thoughts():
    items = [_item(ContextType.AI_THINKING, ThinkingPayload(my_thoughts="They need rest."))]
    assert format_thinking(items) == "They need rest."


def test_format_thinking_builds_reflection():
    payload = ThinkingPayload(
        analysis="they open up late at night",
        strategy="keep things light",
        ai_goals=[
            {"goal": "Encourage sleep", "priority": 1},
            {"goal": "Ask about work", "priority": 3},
            {"goal": "Share a joke", "priority": 2},
            {"goal": "Suggest a walk", "priority": 0},
        ],
    )
    items = [_item(ContextType.AI_THINKING, payload, metadata={"use_fallback": True})]
    assert format_thinking(items) == (
        "As your companion, I've been reflecting on our interaction:\n\n"
        "Based on our conversation, I notice that they open up late at night\n\n"
        "My approach is to keep things light\n\n"
        "To support you, I'm focusing on:\n• Ask about work\n• Share a joke\n• Encourage sleep"
    )


def test_format_thinking_empty():
    assert format_thinking([_item(ContextType.AI_THINKING, ThinkingPayload())]) == ""


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


def test_generate_context_summary_groups_in_order():
    items = [
        _item(ContextType.TIME, TIME),
        _item(
            ContextType.WEATHER,
            WeatherPayload(temperature=18, condition="cloudy", location="Paris"),
        ),
        _item(ContextType.TIME, TIME.model_copy(update={"local_time": "09:00"})),
    ]
    assert generate_context_summary(items) == (
        "## Time Context\n"
        "It is currently 14:30 (afternoon) on Sunday, March 01, 2026.\n\n"
        "## Weather Context\n"
        "The weather in Paris is cloudy with a temperature of 18°C."
    )


def test_generate_context_summary_include_exclude():
    items = [
        _item(ContextType.TIME, TIME),
        _item(ContextType.CUSTOM, CustomPayload(content="Birthday today")),
    ]
    assert generate_context_summary(items, included_types=[ContextType.CUSTOM]) == (
        "## Additional Context\nAdditional context:\n- Birthday today"
    )
    assert generate_context_summary(items, excluded_types=[ContextType.CUSTOM]).startswith(
        "## Time Context"
    )


def test_generate_context_summary_empty():
    assert generate_context_summary([]) == ""
    assert generate_context_summary([_item(ContextType.AI_THINKING, ThinkingPayload())]) == ""


def test_mismatched_payload_falls_back_to_custom_rendering():
    items = [_item(ContextType.WEATHER, CustomPayload(content="Storm warning"))]
    assert generate_context_summary(items) == (
        "## Weather Context\nAdditional context:\n- Storm warning"
    )
