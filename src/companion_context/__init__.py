"""Companion Context - memory and context synthesis for AI companions.

Provides:
- Tiered, decaying, soft-deletable user memories
- Ephemeral typed context items with duration tiers
- Scoped relevance retrieval
- Budgeted prompt assembly and history summarization
"""

from .config import EngineConfig, load_config
from .context_assembler import AssembledPrompt, ContextAssembler, PromptSection
from .context_registry import ContextRegistry
from .engine import ContextEngine, ContextEngineInterface
from .exceptions import (
    CollaboratorError,
    ContextEngineError,
    StorageError,
    StorageUnavailableError,
    ValidationError,
)
from .history import (
    HeuristicHistorySummarizer,
    HistoryFormatter,
    HistorySummarizer,
    LLMHistorySummarizer,
)
from .memory_store import MemoryStore, decayed_importance
from .models import (
    ActionInfo,
    ActiveTask,
    ChatMessage,
    CompanionState,
    ContextDuration,
    ContextItem,
    ContextType,
    Memory,
    MemoryCategory,
    MemoryTier,
    RetrievalResult,
    StorageMode,
    TaskType,
)
from .retrieval import (
    EmbeddingScorer,
    KeywordScorer,
    RelevanceRetriever,
    RelevanceScorer,
    RetrievalOptions,
)

__all__ = [
    "ActionInfo",
    "ActiveTask",
    "AssembledPrompt",
    "ChatMessage",
    "CollaboratorError",
    "CompanionState",
    "ContextAssembler",
    "ContextDuration",
    "ContextEngine",
    "ContextEngineError",
    "ContextEngineInterface",
    "ContextItem",
    "ContextRegistry",
    "ContextType",
    "EmbeddingScorer",
    "EngineConfig",
    "HeuristicHistorySummarizer",
    "HistoryFormatter",
    "HistorySummarizer",
    "KeywordScorer",
    "LLMHistorySummarizer",
    "Memory",
    "MemoryCategory",
    "MemoryStore",
    "MemoryTier",
    "PromptSection",
    "RelevanceRetriever",
    "RelevanceScorer",
    "RetrievalOptions",
    "RetrievalResult",
    "StorageError",
    "StorageMode",
    "StorageUnavailableError",
    "TaskType",
    "ValidationError",
    "decayed_importance",
    "load_config",
]
