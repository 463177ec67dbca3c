"""Tests for active task rendering."""

from unittest.mock import AsyncMock

import pytest

from companion_context.models import ActiveTask, TaskType
from companion_context.task_renderers import FOCUS_LINE, TaskRenderer, condense_events


def _task(task_type, state=None, **kwargs):
    return ActiveTask(id="t1", type=task_type, name="Test", state=state or {}, **kwargs)


# ---------------------------------------------------------------------------
# condense_events
# ---------------------------------------------------------------------------


def test_condense_events():
    assert condense_events(["The gate opened"]) == "The gate opened"
    assert condense_events(
        [{"event": "Met the guard"}, "Found a key", {"event": "Crossed the bridge"}]
    ) == (
        "3 earlier events took place, starting with Met the guard "
        "and most recently Crossed the bridge"
    )
    assert condense_events([{"mood": "tense"}]) == "1 earlier events took place"


# ---------------------------------------------------------------------------
# Roleplay
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_roleplay_render_full():
    state = {
        "scenario": "Heist",
        "setting": "Venice",
        "current_scene": "The vault",
        "mood": "tense",
        "characters": [
            {"name": "Rosa", "role": "thief", "goal": "steal the gem", "mood": "focused"},
            "A sleepy guard",
        ],
        "recent_events": ["Picked the lock", "Heard footsteps"],
    }
    task = _task(TaskType.ROLEPLAY, state, goal="Finish the heist", user_goal="Escape")
    rendered = await TaskRenderer().render(task)

    assert rendered == (
        "Activity Goal: Finish the heist\n"
        "Your Goal (User): Escape\n"
        "Roleplay State:\n"
        "  Scenario: Heist\n"
        "  Setting: Venice\n"
        "  Current Location: Venice\n"
        "  Current Scene: The vault\n"
        "  Overall Mood: tense\n"
        "  Characters Present/Relevant:\n"
        "    - Rosa (thief) [Goal: steal the gem] [Mood: focused]\n"
        "    - A sleepy guard\n"
        "  Recent Events: Picked the lock; Heard footsteps\n"
        + FOCUS_LINE
    )


@pytest.mark.asyncio
async def test_roleplay_defaults_and_nested_state():
    task = _task(TaskType.ROLEPLAY, {"data": {"scenario": "Space station"}})
    rendered = await TaskRenderer().render(task)
    assert "  Scenario: Space station\n" in rendered
    assert "  Current Location: Not specified\n" in rendered
    assert "  Recent Events: None recorded yet.\n" in rendered


@pytest.mark.asyncio
async def test_roleplay_long_log_uses_generator(mock_generator):
    events = [f"event {i}" for i in range(25)]
    state = {"event_log": events, "recent_events": events}
    rendered = await TaskRenderer(mock_generator, recent_events=20).render(
        _task(TaskType.ROLEPLAY, state)
    )

    recent = "; ".join(events[5:])
    assert f"  Previously: The heroes crossed the river. Recently: {recent}\n" in rendered
    prompt = mock_generator.generate.call_args.args[0]
    assert "- event 0\n" in prompt
    assert "- event 5" not in prompt


@pytest.mark.asyncio
async def test_roleplay_long_log_falls_back_without_generator():
    events = [{"event": f"step {i}", "mood": "calm"} for i in range(22)]
    state = {"event_log": events, "recent_events": ["step 20", "step 21"]}
    rendered = await TaskRenderer(recent_events=20).render(_task(TaskType.ROLEPLAY, state))
    assert (
        "Previously: 2 earlier events took place, starting with step 0 and most "
        "recently step 1. Recently: step 20; step 21"
    ) in rendered


@pytest.mark.asyncio
async def test_roleplay_generator_failure_falls_back():
    generator = AsyncMock()
    generator.generate.side_effect = RuntimeError("timeout")
    state = {"event_log": ["a", "b", "c"], "recent_events": ["c"]}
    rendered = await TaskRenderer(generator, recent_events=2).render(
        _task(TaskType.ROLEPLAY, state)
    )
    assert "Previously: a. Recently: c" in rendered


# ---------------------------------------------------------------------------
# Game / brainstorm / custom
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_game_render():
    state = {
        "game_type": "tictactoe",
        "current_player": "X",
        "board": [["X", "O", ""], ["", "", ""], ["", "", ""]],
        "score": {"X": 1, "O": 0},
    }
    rendered = await TaskRenderer().render(_task(TaskType.GAME, state))
    assert rendered.startswith(
        "Game State (tictactoe): Current Player: X. Winner: None.\nBoard:\n  X | O |  \n"
    )
    assert "Score: {'X': 1, 'O': 0}\n" in rendered
    assert rendered.endswith(FOCUS_LINE)


def test_game_render_without_board():
    assert TaskRenderer.render_game({"winner": "O"}) == (
        "Game State (unknown): Current Player: ?. Winner: O.\n"
    )


def test_brainstorm_render():
    state = {"topic": "Birthday gifts", "phase": "diverge", "ideas": ["book", "plant"]}
    assert TaskRenderer.render_brainstorm(state) == (
        "Brainstorm State: Topic: Birthday gifts. Phase: diverge. Ideas generated: 2.\n"
    )


@pytest.mark.asyncio
async def test_custom_task_render():
    rendered = await TaskRenderer().render(
        _task(TaskType.CUSTOM, {"step": 2, "total": 5}, assistant_goal="Keep pace")
    )
    assert rendered == (
        "My Goal (Assistant): Keep pace\n"
        "Activity State: step: 2, total: 5\n" + FOCUS_LINE
    )
