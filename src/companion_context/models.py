"""Core data models for memories, context items and prompt assembly."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from .payloads import ContextPayload, bounded_map

ACTIVITY_SUMMARY_SOURCE = "activity-summary"
AI_GENERATED_SOURCE = "ai-generated"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid4())


class MemoryTier(str, Enum):
    SHORT = "short_term"
    MEDIUM = "medium_term"
    LONG = "long_term"
    PERMANENT = "permanent"


class MemoryCategory(str, Enum):
    FACT = "fact"
    PREFERENCE = "preference"
    INTEREST = "interest"
    BEHAVIOR = "behavior"
    GOAL = "goal"
    INTERACTION = "interaction"
    CONVERSATION = "conversation"
    EVENT = "event"
    TOPIC = "topic"
    RELATIONSHIP = "relationship"
    CUSTOM = "custom"


class ContextType(str, Enum):
    TIME = "time"
    WEATHER = "weather"
    LOCATION = "location"
    EMOTION = "emotion"
    SOCIAL = "social"
    PRODUCTIVITY = "productivity"
    ACTIVITY = "activity"
    AI_THINKING = "ai_thinking"
    CUSTOM = "custom"


class ContextDuration(str, Enum):
    IMMEDIATE = "immediate"
    SHORT = "short_term"
    MEDIUM = "medium_term"
    LONG = "long_term"
    PERMANENT = "permanent"


class StorageMode(str, Enum):
    DURABLE = "durable"
    FALLBACK = "fallback"


TIER_HORIZONS: dict[MemoryTier, timedelta | None] = {
    MemoryTier.SHORT: timedelta(hours=1),
    MemoryTier.MEDIUM: timedelta(days=7),
    MemoryTier.LONG: timedelta(days=90),
    MemoryTier.PERMANENT: None,
}

DURATION_HORIZONS: dict[ContextDuration, timedelta | None] = {
    ContextDuration.IMMEDIATE: timedelta(minutes=5),
    ContextDuration.SHORT: timedelta(hours=1),
    ContextDuration.MEDIUM: timedelta(days=1),
    ContextDuration.LONG: timedelta(days=7),
    ContextDuration.PERMANENT: None,
}


def memory_expiry(tier: MemoryTier, created_at: datetime) -> datetime | None:
    horizon = TIER_HORIZONS[tier]
    return created_at + horizon if horizon is not None else None


def context_expiry(duration: ContextDuration, created_at: datetime) -> datetime | None:
    horizon = DURATION_HORIZONS[duration]
    return created_at + horizon if horizon is not None else None


class Memory(BaseModel):
    """A durable fact learned about a user."""

    id: str = Field(default_factory=_uuid)
    user_id: str
    text: str
    tier: MemoryTier = MemoryTier.MEDIUM
    category: MemoryCategory = MemoryCategory.FACT
    source: str = "user"
    importance: float = Field(default=5.0, ge=0.1, le=10.0)
    created_at: datetime = Field(default_factory=_utcnow)
    last_accessed_at: datetime | None = None
    access_count: int = Field(default=0, ge=0)
    expires_at: datetime | None = None
    is_deleted: bool = False
    activity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    embedding: list[float] | None = None
    related_memories: list[str] = Field(default_factory=list)

    @field_validator("metadata")
    @classmethod
    def _bounded_metadata(cls, value: dict[str, Any]) -> dict[str, Any]:
        return bounded_map(value)

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or _utcnow()
        return self.expires_at is not None and self.expires_at <= now

    @property
    def is_activity_summary(self) -> bool:
        return self.source == ACTIVITY_SUMMARY_SOURCE


class ContextItem(BaseModel):
    """An ephemeral situational fact."""

    id: str = Field(default_factory=_uuid)
    user_id: str
    type: ContextType
    duration: ContextDuration
    data: ContextPayload
    source: str = "system"
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime | None = None
    expires_at: datetime | None = None

    @field_validator("metadata")
    @classmethod
    def _bounded_metadata(cls, value: dict[str, Any]) -> dict[str, Any]:
        return bounded_map(value)

    def is_live(self, now: datetime | None = None) -> bool:
        """Active and not past its expiry."""
        now = now or _utcnow()
        return self.is_active and (self.expires_at is None or self.expires_at > now)

    def flag(self, name: str) -> bool:
        return bool(self.metadata.get(name))


class RetrievalResult(BaseModel):
    """A scored memory returned by the retriever. Not persisted."""

    memory: Memory
    score: float

    @property
    def id(self) -> str:
        return self.memory.id

    @property
    def content(self) -> str:
        return self.memory.text


class ChatMessage(BaseModel):
    """A single conversation message."""

    role: str  # "user", "assistant", "system"
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Collaborator state
# ---------------------------------------------------------------------------


class Goal(BaseModel):
    goal: str
    priority: float = 0.0
    progress: float = 0.0


class Interest(BaseModel):
    topic: str
    level: float = 1.0


class FocusArea(BaseModel):
    topic: str
    importance: float = 0.0


class CompanionEmotion(BaseModel):
    emotion: str
    intensity: float = 5.0
    reason: str | None = None


class CompanionState(BaseModel):
    """Snapshot of the companion's own state, owned by an external service."""

    current_goals: list[Goal] = Field(default_factory=list)
    ai_internal_goals: list[Goal] = Field(default_factory=list)
    focus_areas: list[FocusArea] = Field(default_factory=list)
    current_emotion: CompanionEmotion | None = None
    last_interaction_at: datetime | None = None
    ai_interests: list[Interest] = Field(default_factory=list)


class ActionInfo(BaseModel):
    name: str
    category: str | None = None
    description: str = ""


class TaskType(str, Enum):
    ROLEPLAY = "roleplay"
    GAME = "game"
    BRAINSTORM = "brainstorm"
    CUSTOM = "custom"


class ActiveTask(BaseModel):
    """The user's ongoing activity, used for scoping and rendering."""

    id: str
    type: TaskType
    name: str
    goal: str | None = None
    user_goal: str | None = None
    assistant_goal: str | None = None
    state: dict[str, Any] = Field(default_factory=dict)
