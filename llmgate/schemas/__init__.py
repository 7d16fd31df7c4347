from .context import ContextMessage, ContextSummary, ConversationMeta, TodoItem
from .handoff import AttemptInfo, HandoffPackage, TestRunResult
from .llm import (
    LLMRequest,
    LLMResponse,
    ModelConfig,
    ProviderCompletion,
    ProviderHealthStatus,
)

__all__ = [
    "AttemptInfo",
    "ContextMessage",
    "ContextSummary",
    "ConversationMeta",
    "HandoffPackage",
    "LLMRequest",
    "LLMResponse",
    "ModelConfig",
    "ProviderCompletion",
    "ProviderHealthStatus",
    "TestRunResult",
    "TodoItem",
]
