"""Typed context payloads.

Every ContextItem carries exactly one of these models, discriminated on
``kind``. Free-form producer data lands in :class:`CustomPayload`, whose
``extra`` map is bounded.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

MAX_EXTRA_KEYS = 32


def bounded_map(value: dict[str, Any], limit: int = MAX_EXTRA_KEYS) -> dict[str, Any]:
    """Reject open maps with more than ``limit`` keys."""
    if len(value) > limit:
        raise ValueError(f"map holds {len(value)} keys, limit is {limit}")
    return value


class TimePayload(BaseModel):
    kind: Literal["time"] = "time"
    local_time: str
    time_of_day: str
    day_of_week: str
    date: str
    timestamp: float


class WeatherPayload(BaseModel):
    kind: Literal["weather"] = "weather"
    temperature: float
    condition: str
    location: str
    humidity: float | None = None
    wind_speed: float | None = None


class LocationPayload(BaseModel):
    kind: Literal["location"] = "location"
    city: str
    country: str
    neighborhood: str | None = None
    timezone: str | None = None


class UserEmotionPayload(BaseModel):
    kind: Literal["user_emotion"] = "user_emotion"
    primary_emotion: str
    secondary_emotion: str | None = None
    intensity: int = Field(default=5, ge=1, le=10)
    detection_method: str | None = None
    trigger: str | None = None


class CompanionEmotionPayload(BaseModel):
    kind: Literal["companion_emotion"] = "companion_emotion"
    emotion: str
    intensity: int = Field(default=5, ge=1, le=10)
    reason: str | None = None
    duration: str | None = None


class SocialMatch(BaseModel):
    name: str
    score: float


class SocialPayload(BaseModel):
    kind: Literal["social"] = "social"
    connection_count: int | None = None
    recent_interactions: int | None = None
    pending_connection_requests: int | None = None
    top_connections: list[str] = Field(default_factory=list)
    matches: list[SocialMatch] = Field(default_factory=list)


class NotePayload(BaseModel):
    kind: Literal["note"] = "note"
    title: str | None = None
    content: str = ""
    tags: list[str] = Field(default_factory=list)


class ActivityPayload(BaseModel):
    kind: Literal["activity"] = "activity"
    activity_id: str
    activity_type: str
    activity_name: str = "Unknown"
    state: dict[str, Any] = Field(default_factory=dict)
    parameters: dict[str, Any] = Field(default_factory=dict)


class ThinkingGoal(BaseModel):
    goal: str
    priority: float = 0.0


class ThinkingPayload(BaseModel):
    kind: Literal["thinking"] = "thinking"
    my_thoughts: str | None = None
    analysis: str | None = None
    subconscious: str | None = None
    strategy: str | None = None
    ai_goals: list[ThinkingGoal] = Field(default_factory=list)


class UserDesirePayload(BaseModel):
    kind: Literal["user_desire"] = "user_desire"
    statement: str
    timestamp: str


class ThoughtLoopPayload(BaseModel):
    kind: Literal["thought_loop"] = "thought_loop"
    pattern: str
    intensity: int = Field(default=5, ge=1, le=10)
    triggers: list[str] = Field(default_factory=list)
    category: str | None = None
    recommended_action: str | None = None


class ReasoningPayload(BaseModel):
    kind: Literal["reasoning"] = "reasoning"
    pattern: str | None = None
    description: str | None = None


class EngagementSuggestionPayload(BaseModel):
    kind: Literal["engagement_suggestion"] = "engagement_suggestion"
    suggestion: str
    reason: str | None = None


class RecentAction(BaseModel):
    name: str
    success: bool | None = None


class SuggestedAction(BaseModel):
    name: str
    description: str = ""


class ActionPayload(BaseModel):
    kind: Literal["action"] = "action"
    recent_actions: list[RecentAction] = Field(default_factory=list)
    suggested_actions: list[SuggestedAction] = Field(default_factory=list)


class CustomPayload(BaseModel):
    kind: Literal["custom"] = "custom"
    description: str | None = None
    content: str | None = None
    key: str | None = None
    value: Any = None
    extra: dict[str, Any] = Field(default_factory=dict)

    @field_validator("extra")
    @classmethod
    def _bounded_extra(cls, value: dict[str, Any]) -> dict[str, Any]:
        return bounded_map(value)


ContextPayload = Annotated[
    Union[
        TimePayload,
        WeatherPayload,
        LocationPayload,
        UserEmotionPayload,
        CompanionEmotionPayload,
        SocialPayload,
        NotePayload,
        ActivityPayload,
        ThinkingPayload,
        UserDesirePayload,
        ThoughtLoopPayload,
        ReasoningPayload,
        EngagementSuggestionPayload,
        ActionPayload,
        CustomPayload,
    ],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter = TypeAdapter(ContextPayload)

_CUSTOM_FIELDS = ("description", "content", "key", "value")


def coerce_payload(data: Any) -> BaseModel:
    """Turn producer data into a typed payload.

    Payload models pass through, dicts with a ``kind`` are validated against
    the union, and anything else becomes a CustomPayload.
    """
    if isinstance(data, BaseModel) and hasattr(data, "kind"):
        return data
    if isinstance(data, dict):
        if "kind" in data:
            return _payload_adapter.validate_python(data)
        known = {k: data[k] for k in _CUSTOM_FIELDS if k in data}
        extra = {k: v for k, v in data.items() if k not in _CUSTOM_FIELDS}
        return CustomPayload(**known, extra=extra)
    if isinstance(data, str):
        return CustomPayload(content=data)
    return CustomPayload(value=data)


def validate_payload(data: dict[str, Any]) -> BaseModel:
    """Validate a serialized payload (as stored) back into its model."""
    return _payload_adapter.validate_python(data)
