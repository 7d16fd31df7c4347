from __future__ import annotations

from sqlalchemy import delete, insert as sa_insert, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from llmgate.models.conversation import Conversation
from llmgate.repositories.base import BaseRepository


class ConversationRepository(BaseRepository[Conversation]):
    model = Conversation

    async def ensure(
        self,
        conversation_id: str,
        *,
        user_id: str | None = None,
        project_id: str | None = None,
    ) -> tuple[Conversation, bool]:
        """
        获取或创建会话行，返回 (会话, 是否新建)

        并发创建同一会话时依赖 ON CONFLICT DO NOTHING，落败方直接读取已存在的行。
        """
        existing = await self.get(conversation_id)
        if existing:
            return existing, False

        bind = self.session.get_bind()
        dialect = bind.dialect.name if bind else ""
        if dialect == "postgresql":
            stmt = pg_insert(Conversation)
        elif dialect == "sqlite":
            stmt = sqlite_insert(Conversation)
        else:
            stmt = sa_insert(Conversation)

        stmt = stmt.values(
            id=conversation_id,
            user_id=user_id,
            project_id=project_id,
            message_count=0,
            last_summary_version=0,
        )
        if hasattr(stmt, "on_conflict_do_nothing"):
            stmt = stmt.on_conflict_do_nothing(index_elements=["id"])

        result = await self.session.execute(stmt)
        created = bool(result.rowcount)
        conversation = await self.get(conversation_id)
        if conversation is None:
            raise RuntimeError(f"Conversation {conversation_id} missing after insert")
        return conversation, created

    async def increment_message_count(self, conversation_id: str, amount: int = 1) -> None:
        await self.session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(message_count=Conversation.message_count + amount)
        )

    async def set_summary_version(self, conversation_id: str, version: int) -> None:
        await self.session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .where(Conversation.last_summary_version < version)
            .values(last_summary_version=version)
        )

    async def delete_conversation(self, conversation_id: str) -> int:
        result = await self.session.execute(
            delete(Conversation).where(Conversation.id == conversation_id)
        )
        return int(result.rowcount or 0)
