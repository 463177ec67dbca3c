"""Engine configuration models."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator


class StorageConfig(BaseModel):
    """Durable storage configuration."""

    sqlite_db_path: str = "./memory/companion_context.db"
    probe_interval_seconds: float = 30.0

    @model_validator(mode="after")
    def _validate_paths(self) -> "StorageConfig":
        normalized = os.path.normpath(self.sqlite_db_path)
        parts = normalized.replace("\\", "/").split("/")
        if ".." in parts:
            raise ValueError(
                f"sqlite_db_path must not contain '..' components: "
                f"{self.sqlite_db_path!r}"
            )
        self.sqlite_db_path = normalized
        return self


class MemoryStoreConfig(BaseModel):
    """Memory lifecycle configuration."""

    decay_rate: float = Field(default=0.1, ge=0.0, lt=1.0)  # per day
    max_memories_per_user: int = Field(default=1000, ge=1)
    default_importance: float = 5.0


class ContextRegistryConfig(BaseModel):
    """Context registry configuration."""

    default_source: str = "system"


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration."""

    provider: str = "placeholder"  # "placeholder", "local" or "none"
    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    dimension: int = 384
    trust_remote_code: bool = False


class RetrievalConfig(BaseModel):
    """Relevance retrieval configuration."""

    default_limit: int = 5
    score_threshold: float = 0.2
    activity_boost: float = 0.5
    filter_by_activity: bool = True
    keyword_weight: float = 0.2
    min_keyword_length: int = 4
    summary_source_bonus: float = 0.2
    cross_activity_penalty: float = 0.5
    scorer: str = "keyword"  # "keyword" or "embedding"
    embedding_weight: float = 0.6


class SectionBudgets(BaseModel):
    """Token caps per prompt section (persona is never truncated)."""

    directive: int = 300
    context_summary: int = 600
    profile_summary: int = 400
    memories: int = 1200
    goals: int = 400
    interests: int = 200
    active_task: int = 800
    actions: int = 150

    def total(self) -> int:
        return sum(self.model_dump().values())


class PromptConfig(BaseModel):
    """Prompt assembly configuration."""

    instructions: str = ""
    budgets: SectionBudgets = Field(default_factory=SectionBudgets)
    memory_limit: int = 25
    max_goals: int = 3
    max_actions: int = 5
    roleplay_recent_events: int = 20
    include_companion_interests: bool = False
    memory_suffix: str = (
        "\n\nUse these memories subtly to personalize the conversation if "
        'relevant. Avoid stating "I remember..." unless user asks about memory.'
    )


class HistoryConfig(BaseModel):
    """Conversation history configuration."""

    summarizer: str = "heuristic"  # "heuristic" or "llm"
    default_budget_tokens: int = 2000
    small_conversation_exchanges: int = 3
    truncate_chars: int = 60
    top_topics: int = 5
    min_topic_length: int = 4


class MaintenanceConfig(BaseModel):
    """Background maintenance configuration."""

    enabled: bool = True
    interval_seconds: float = 300.0


class EngineConfig(BaseModel):
    """Top-level engine configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    memory: MemoryStoreConfig = Field(default_factory=MemoryStoreConfig)
    context: ContextRegistryConfig = Field(default_factory=ContextRegistryConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    prompt: PromptConfig = Field(default_factory=PromptConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)


_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


def read_yaml(config_path: str | Path) -> dict[str, Any]:
    """Read a YAML file, substituting ``${VAR}`` with environment values.

    Unknown variables are left untouched.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Configuration data as a dictionary

    Raises:
        FileNotFoundError: If the configuration file is not found
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    content = path.read_text(encoding="utf-8")

    def replacer(match: re.Match) -> str:
        return os.getenv(match.group(1), match.group(0))

    content = _ENV_PATTERN.sub(replacer, content)

    try:
        return yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        logger.critical(f"Error parsing YAML file: {e}")
        raise


def _format_validation_error(error: ValidationError) -> str:
    lines = []
    for err in error.errors():
        location = " -> ".join(str(loc) for loc in err["loc"])
        lines.append(f"  - '{location}': {err['msg']}")
    return "\n".join(lines)


def load_config(config_path: str | Path) -> EngineConfig:
    """Load an EngineConfig from YAML.

    The file may hold the engine settings at the top level or under a
    ``companion_context`` key.
    """
    data = read_yaml(config_path)
    section = data.get("companion_context", data)
    try:
        config = EngineConfig.model_validate(section)
    except ValidationError as e:
        message = _format_validation_error(e)
        logger.error(f"Invalid engine configuration in {config_path}:\n{message}")
        raise ValueError(f"Invalid engine configuration:\n{message}") from e
    logger.info(f"Loaded engine configuration from {config_path}")
    return config
