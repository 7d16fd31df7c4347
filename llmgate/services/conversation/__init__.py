from .context_store import CacheFamily, ConversationContextStore

__all__ = ["CacheFamily", "ConversationContextStore"]
