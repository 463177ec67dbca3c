"""Tests for memory/context models and the typed payload union."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from companion_context.models import (
    ContextDuration,
    ContextItem,
    ContextType,
    Memory,
    MemoryTier,
    TIER_HORIZONS,
    context_expiry,
    memory_expiry,
)
from companion_context.payloads import (
    CustomPayload,
    MAX_EXTRA_KEYS,
    TimePayload,
    UserEmotionPayload,
    WeatherPayload,
    coerce_payload,
    validate_payload,
)


# ---------------------------------------------------------------------------
# Expiry horizons
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("tier", [MemoryTier.SHORT, MemoryTier.MEDIUM, MemoryTier.LONG])
def test_memory_expiry_matches_tier_horizon(tier, now):
    assert memory_expiry(tier, now) - now == TIER_HORIZONS[tier]


def test_permanent_memory_never_expires(now):
    assert memory_expiry(MemoryTier.PERMANENT, now) is None


def test_context_expiry_horizons(now):
    assert context_expiry(ContextDuration.IMMEDIATE, now) == now + timedelta(minutes=5)
    assert context_expiry(ContextDuration.LONG, now) == now + timedelta(days=7)
    assert context_expiry(ContextDuration.PERMANENT, now) is None


def test_memory_is_expired(now):
    memory = Memory(user_id="u1", text="x", expires_at=now - timedelta(seconds=1))
    assert memory.is_expired(now)
    assert not Memory(user_id="u1", text="x").is_expired(now)


def test_memory_importance_bounds():
    with pytest.raises(ValidationError):
        Memory(user_id="u1", text="x", importance=11)
    with pytest.raises(ValidationError):
        Memory(user_id="u1", text="x", importance=0.0)


def test_memory_metadata_is_bounded():
    with pytest.raises(ValidationError):
        Memory(
            user_id="u1",
            text="x",
            metadata={f"k{i}": i for i in range(MAX_EXTRA_KEYS + 1)},
        )


def test_context_item_is_live(now):
    item = ContextItem(
        user_id="u1",
        type=ContextType.TIME,
        duration=ContextDuration.IMMEDIATE,
        data=CustomPayload(content="x"),
        created_at=now,
        expires_at=now + timedelta(minutes=5),
    )
    assert item.is_live(now)
    assert not item.is_live(now + timedelta(minutes=6))
    item.is_active = False
    assert not item.is_live(now)


# ---------------------------------------------------------------------------
# Payload coercion
# ---------------------------------------------------------------------------


def test_coerce_payload_passes_models_through():
    payload = WeatherPayload(temperature=20, condition="sunny", location="Oslo")
    assert coerce_payload(payload) is payload


def test_coerce_payload_validates_kind_dicts():
    payload = coerce_payload({"kind": "user_emotion", "primary_emotion": "happy"})
    assert isinstance(payload, UserEmotionPayload)
    assert payload.intensity == 5


def test_coerce_payload_rejects_bad_kind_dicts():
    with pytest.raises(ValidationError):
        coerce_payload({"kind": "user_emotion", "intensity": 3})


def test_coerce_payload_wraps_free_form_dicts():
    payload = coerce_payload({"key": "mood", "value": "calm", "origin": "sensor"})
    assert isinstance(payload, CustomPayload)
    assert payload.key == "mood"
    assert payload.extra == {"origin": "sensor"}


def test_coerce_payload_wraps_strings_and_scalars():
    assert coerce_payload("hello").content == "hello"
    assert coerce_payload(42).value == 42


def test_custom_payload_extra_is_bounded():
    with pytest.raises(ValidationError):
        CustomPayload(extra={f"k{i}": i for i in range(MAX_EXTRA_KEYS + 1)})


def test_validate_payload_restores_stored_model():
    stored = TimePayload(
        local_time="09:30",
        time_of_day="morning",
        day_of_week="Monday",
        date="March 02, 2026",
        timestamp=0.0,
    ).model_dump(mode="json")
    assert isinstance(validate_payload(stored), TimePayload)
