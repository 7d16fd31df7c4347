from .base import Base
from .conversation import (
    ContextSummaryRecord,
    Conversation,
    ConversationMessage,
    TodoItemRecord,
    TodoStatus,
)

__all__ = [
    "Base",
    "ContextSummaryRecord",
    "Conversation",
    "ConversationMessage",
    "TodoItemRecord",
    "TodoStatus",
]
