"""Context Registry: ephemeral, typed situational facts.

Items expire by duration tier. Expiry never deletes: the sweep flips
``is_active`` off so the record is kept for audit, and explicit removal is a
separate operation.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from .config import ContextRegistryConfig
from .exceptions import ValidationError
from .models import ContextDuration, ContextItem, ContextType, context_expiry
from .payloads import (
    ActionPayload,
    ActivityPayload,
    CompanionEmotionPayload,
    EngagementSuggestionPayload,
    LocationPayload,
    NotePayload,
    SocialPayload,
    ThinkingPayload,
    ThoughtLoopPayload,
    TimePayload,
    UserDesirePayload,
    UserEmotionPayload,
    WeatherPayload,
    coerce_payload,
)
from .storage.router import StorageRouter

_PATCHABLE_FIELDS = {"duration", "data", "source", "metadata", "is_active"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def time_of_day(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


class ContextRegistry:
    """Registry of context items, backed by the shared storage router."""

    def __init__(
        self, router: StorageRouter, config: ContextRegistryConfig | None = None
    ):
        self._router = router
        self.config = config or ContextRegistryConfig()

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def inject_context(
        self,
        user_id: str,
        type: ContextType | str,
        duration: ContextDuration | str,
        data: Any,
        source: str | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> ContextItem:
        """Store a new active context item.

        Args:
            user_id: Owner of the item
            type: Context type (what it describes)
            duration: Duration tier (how long it stays live)
            data: Payload model, or raw data coerced into one
            source: Producer tag (defaults to config)
            metadata: Bounded flag/extension map
            now: Creation time (defaults to current UTC time)

        Returns:
            The stored item

        Raises:
            ValidationError: If type, duration or payload is invalid
        """
        try:
            context_type = ContextType(type)
        except ValueError as e:
            raise ValidationError("type", f"unknown context type {type!r}") from e
        try:
            tier = ContextDuration(duration)
        except ValueError as e:
            raise ValidationError(
                "duration", f"unknown duration tier {duration!r}"
            ) from e

        now = now or _utcnow()
        try:
            item = ContextItem(
                user_id=user_id,
                type=context_type,
                duration=tier,
                data=coerce_payload(data),
                source=source or self.config.default_source,
                metadata=metadata or {},
                is_active=True,
                created_at=now,
                expires_at=context_expiry(tier, now),
            )
        except PydanticValidationError as e:
            raise ValidationError("context", str(e)) from e

        await self._router.run("inject_context", lambda b: b.insert_context(item))
        logger.debug(
            f"Injected {context_type.value} context {item.id} for user {user_id} "
            f"({tier.value})"
        )
        return item

    async def get_context(
        self,
        user_id: str,
        type: ContextType | str | None = None,
        only_active: bool = True,
        now: datetime | None = None,
    ) -> list[ContextItem]:
        """List a user's context items, newest first.

        With ``only_active`` the list keeps items that are active and not past
        their expiry, whether or not the sweep has run yet.
        """
        context_type = ContextType(type) if type is not None else None
        items = await self._router.run(
            "get_context", lambda b: b.list_context(user_id, context_type)
        )
        if only_active:
            now = now or _utcnow()
            items = [item for item in items if item.is_live(now)]
        items.sort(key=lambda item: item.created_at, reverse=True)
        return items

    async def get_context_item(self, context_id: str) -> ContextItem | None:
        return await self._router.run(
            "get_context_item", lambda b: b.get_context_item(context_id)
        )

    async def update_context(
        self, context_id: str, patch: dict[str, Any]
    ) -> ContextItem | None:
        """Apply a partial update to a context item.

        Args:
            context_id: Item to update
            patch: Any of duration, data, source, metadata, is_active

        Returns:
            Updated item, or None if it does not exist
        """
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(
                "patch", f"cannot update fields: {', '.join(sorted(unknown))}"
            )

        item = await self.get_context_item(context_id)
        if item is None:
            return None

        values = item.model_dump()
        values["data"] = item.data
        if "data" in patch:
            try:
                values["data"] = coerce_payload(patch["data"])
            except PydanticValidationError as e:
                raise ValidationError("data", str(e)) from e
        if "duration" in patch:
            try:
                tier = ContextDuration(patch["duration"])
            except ValueError as e:
                raise ValidationError(
                    "duration", f"unknown duration tier {patch['duration']!r}"
                ) from e
            values["duration"] = tier
            values["expires_at"] = context_expiry(tier, item.created_at)
        for field in ("source", "metadata", "is_active"):
            if field in patch:
                values[field] = patch[field]
        values["updated_at"] = _utcnow()

        try:
            updated = ContextItem.model_validate(values)
        except PydanticValidationError as e:
            raise ValidationError("patch", str(e)) from e

        replaced = await self._router.run(
            "update_context", lambda b: b.replace_context(updated)
        )
        return updated if replaced else None

    async def deactivate_context(self, context_id: str) -> bool:
        return await self.update_context(context_id, {"is_active": False}) is not None

    async def remove_context(self, context_id: str) -> bool:
        return await self._router.run(
            "remove_context", lambda b: b.delete_context(context_id)
        )

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """Mark expired, still-active items inactive. Safe to repeat."""
        now = now or _utcnow()
        count = await self._router.run(
            "sweep_context", lambda b: b.deactivate_expired_context(now)
        )
        if count:
            logger.info(f"Deactivated {count} expired context items")
        return count

    # ------------------------------------------------------------------
    # Producer helpers
    # ------------------------------------------------------------------

    async def inject_time(
        self, user_id: str, now: datetime | None = None
    ) -> ContextItem:
        """Inject the current local time. ``now`` may carry a user timezone."""
        moment = now or datetime.now().astimezone()
        payload = TimePayload(
            local_time=moment.strftime("%H:%M"),
            time_of_day=time_of_day(moment.hour),
            day_of_week=moment.strftime("%A"),
            date=moment.strftime("%B %d, %Y"),
            timestamp=moment.timestamp(),
        )
        return await self.inject_context(
            user_id,
            ContextType.TIME,
            ContextDuration.SHORT,
            payload,
            source="system-time",
        )

    async def inject_weather(
        self,
        user_id: str,
        temperature: float,
        condition: str,
        location: str,
        humidity: float | None = None,
        wind_speed: float | None = None,
    ) -> ContextItem:
        payload = WeatherPayload(
            temperature=temperature,
            condition=condition,
            location=location,
            humidity=humidity,
            wind_speed=wind_speed,
        )
        return await self.inject_context(
            user_id,
            ContextType.WEATHER,
            ContextDuration.MEDIUM,
            payload,
            source="weather-service",
        )

    async def inject_location(
        self,
        user_id: str,
        city: str,
        country: str,
        neighborhood: str | None = None,
        timezone_name: str | None = None,
    ) -> ContextItem:
        payload = LocationPayload(
            city=city,
            country=country,
            neighborhood=neighborhood,
            timezone=timezone_name,
        )
        return await self.inject_context(
            user_id,
            ContextType.LOCATION,
            ContextDuration.SHORT,
            payload,
            source="location-service",
        )

    async def inject_user_emotion(
        self,
        user_id: str,
        primary_emotion: str,
        intensity: int = 5,
        secondary_emotion: str | None = None,
        detection_method: str | None = None,
        trigger: str | None = None,
    ) -> ContextItem:
        payload = UserEmotionPayload(
            primary_emotion=primary_emotion,
            secondary_emotion=secondary_emotion,
            intensity=intensity,
            detection_method=detection_method,
            trigger=trigger,
        )
        return await self.inject_context(
            user_id,
            ContextType.EMOTION,
            ContextDuration.MEDIUM,
            payload,
            source="emotion-detection",
            metadata={"is_user_emotion": True},
        )

    async def inject_companion_emotion(
        self,
        user_id: str,
        emotion: str,
        intensity: int = 5,
        reason: str | None = None,
    ) -> ContextItem:
        payload = CompanionEmotionPayload(
            emotion=emotion, intensity=intensity, reason=reason
        )
        return await self.inject_context(
            user_id,
            ContextType.EMOTION,
            ContextDuration.MEDIUM,
            payload,
            source="companion-emotion",
            metadata={"is_companion_emotion": True},
        )

    async def inject_user_notes(
        self, user_id: str, notes: Iterable[NotePayload | dict[str, Any]]
    ) -> list[ContextItem]:
        """Inject one PRODUCTIVITY item per note."""
        items = []
        for note in notes:
            payload = note if isinstance(note, NotePayload) else NotePayload(**note)
            items.append(
                await self.inject_context(
                    user_id,
                    ContextType.PRODUCTIVITY,
                    ContextDuration.LONG,
                    payload,
                    source="user-notes",
                )
            )
        return items

    async def inject_social(
        self, user_id: str, social: SocialPayload | dict[str, Any]
    ) -> ContextItem:
        payload = social if isinstance(social, SocialPayload) else SocialPayload(**social)
        return await self.inject_context(
            user_id,
            ContextType.SOCIAL,
            ContextDuration.MEDIUM,
            payload,
            source="social-service",
        )

    async def inject_thought_loop(
        self,
        user_id: str,
        pattern: str,
        intensity: int = 5,
        triggers: Iterable[str] = (),
        category: str | None = None,
        recommended_action: str | None = None,
    ) -> ContextItem:
        payload = ThoughtLoopPayload(
            pattern=pattern,
            intensity=intensity,
            triggers=list(triggers),
            category=category,
            recommended_action=recommended_action,
        )
        return await self.inject_context(
            user_id,
            ContextType.CUSTOM,
            ContextDuration.LONG,
            payload,
            source="thought-loop-detection",
            metadata={"is_thought_loop": True},
        )

    async def inject_engagement_suggestion(
        self, user_id: str, suggestion: str, reason: str | None = None
    ) -> ContextItem:
        payload = EngagementSuggestionPayload(suggestion=suggestion, reason=reason)
        return await self.inject_context(
            user_id,
            ContextType.CUSTOM,
            ContextDuration.SHORT,
            payload,
            source="engagement-engine",
            metadata={"is_engagement_suggestion": True},
        )

    async def inject_action_context(
        self, user_id: str, actions: ActionPayload | dict[str, Any]
    ) -> ContextItem:
        payload = (
            actions if isinstance(actions, ActionPayload) else ActionPayload(**actions)
        )
        return await self.inject_context(
            user_id,
            ContextType.CUSTOM,
            ContextDuration.SHORT,
            payload,
            source="action-service",
            metadata={"is_action_context": True},
        )

    async def inject_user_desire(
        self, user_id: str, statement: str, now: datetime | None = None
    ) -> ContextItem:
        now = now or _utcnow()
        payload = UserDesirePayload(statement=statement, timestamp=now.isoformat())
        return await self.inject_context(
            user_id,
            ContextType.CUSTOM,
            ContextDuration.LONG,
            payload,
            source="user-stated-desire",
            metadata={"is_user_desire": True},
            now=now,
        )

    async def inject_thinking(
        self, user_id: str, thinking: ThinkingPayload | dict[str, Any]
    ) -> ContextItem:
        payload = (
            thinking
            if isinstance(thinking, ThinkingPayload)
            else ThinkingPayload(**thinking)
        )
        return await self.inject_context(
            user_id,
            ContextType.AI_THINKING,
            ContextDuration.MEDIUM,
            payload,
            source="meta-thinking",
        )

    async def inject_activity(
        self,
        user_id: str,
        activity_id: str,
        activity_type: str,
        activity_name: str = "Unknown",
        state: dict[str, Any] | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> ContextItem:
        payload = ActivityPayload(
            activity_id=activity_id,
            activity_type=activity_type,
            activity_name=activity_name,
            state=state or {},
            parameters=parameters or {},
        )
        return await self.inject_context(
            user_id,
            ContextType.ACTIVITY,
            ContextDuration.MEDIUM,
            payload,
            source="activity-service",
            metadata={"activity_id": activity_id},
        )
