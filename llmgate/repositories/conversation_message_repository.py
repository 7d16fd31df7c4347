from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, select

from llmgate.models.conversation import ConversationMessage
from llmgate.repositories.base import BaseRepository


class ConversationMessageRepository(BaseRepository[ConversationMessage]):
    model = ConversationMessage

    async def append(
        self,
        *,
        conversation_id: str,
        role: str,
        content: str,
        meta_info: dict[str, Any] | None = None,
    ) -> ConversationMessage:
        return await self.create(
            {
                "conversation_id": conversation_id,
                "role": role,
                "content": content,
                "meta_info": meta_info,
            }
        )

    async def list_recent(
        self,
        *,
        conversation_id: str,
        limit: int,
    ) -> list[ConversationMessage]:
        """最近 limit 条消息，按写入顺序（旧 -> 新）返回"""
        stmt = (
            select(ConversationMessage)
            .where(ConversationMessage.conversation_id == conversation_id)
            .order_by(ConversationMessage.id.desc())
            .limit(max(int(limit), 0))
        )
        result = await self.session.execute(stmt)
        rows = list(result.scalars().all())
        rows.reverse()
        return rows

    async def count_for(self, conversation_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ConversationMessage)
            .where(ConversationMessage.conversation_id == conversation_id)
        )
        return int(result.scalar() or 0)

    async def delete_for(self, conversation_id: str) -> int:
        result = await self.session.execute(
            delete(ConversationMessage).where(
                ConversationMessage.conversation_id == conversation_id
            )
        )
        return int(result.rowcount or 0)
