"""缓存 Key 注册表实现。

禁止在业务代码中硬编码 Redis Key，统一从此处生成，便于失效管理。
前缀 (settings.CACHE_PREFIX) 由 HotCache 统一追加，这里只生成逻辑 key。
"""

from __future__ import annotations


class CacheKeys:
    # ===== Conversation Context =====
    @classmethod
    def conversation_summary(cls, conversation_id: str) -> str:
        """会话最新摘要。"""
        return f"conv:summary:{conversation_id}"

    @classmethod
    def conversation_messages(cls, conversation_id: str) -> str:
        """会话最近消息窗口（按时间正序）。"""
        return f"conv:messages:{conversation_id}"

    @classmethod
    def conversation_todos(cls, conversation_id: str) -> str:
        return f"todo:list:{conversation_id}"

    @classmethod
    def conversation_meta(cls, conversation_id: str) -> str:
        """会话元信息：消息计数 / 摘要版本 / 最近活跃时间。"""
        return f"conv:meta:{conversation_id}"

    @classmethod
    def conversation_keys(cls, conversation_id: str) -> list[str]:
        """某会话在热缓存中的全部 key，用于一次性失效。"""
        return [
            cls.conversation_summary(conversation_id),
            cls.conversation_messages(conversation_id),
            cls.conversation_todos(conversation_id),
            cls.conversation_meta(conversation_id),
        ]
