from .base import BaseRepository
from .context_summary_repository import ContextSummaryRepository
from .conversation_message_repository import ConversationMessageRepository
from .conversation_repository import ConversationRepository
from .todo_item_repository import TodoItemRepository

__all__ = [
    "BaseRepository",
    "ContextSummaryRepository",
    "ConversationMessageRepository",
    "ConversationRepository",
    "TodoItemRepository",
]
