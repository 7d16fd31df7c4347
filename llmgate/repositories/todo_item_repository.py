from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import delete, select

from llmgate.models.conversation import TodoItemRecord
from llmgate.repositories.base import BaseRepository
from llmgate.schemas.context import TodoItem


class TodoItemRepository(BaseRepository[TodoItemRecord]):
    model = TodoItemRecord

    async def list_for(self, conversation_id: str) -> list[TodoItemRecord]:
        stmt = (
            select(TodoItemRecord)
            .where(TodoItemRecord.conversation_id == conversation_id)
            .order_by(TodoItemRecord.position.asc(), TodoItemRecord.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def replace(self, conversation_id: str, todos: Sequence[TodoItem]) -> int:
        """整体替换清单（先删后插，调用方负责事务）"""
        await self.delete_for(conversation_id)
        for position, todo in enumerate(todos):
            self.session.add(
                TodoItemRecord(
                    conversation_id=conversation_id,
                    item_id=todo.id,
                    position=position,
                    title=todo.title,
                    description=todo.description,
                    status=todo.status,
                )
            )
        await self.session.flush()
        return len(todos)

    async def delete_for(self, conversation_id: str) -> int:
        result = await self.session.execute(
            delete(TodoItemRecord).where(TodoItemRecord.conversation_id == conversation_id)
        )
        return int(result.rowcount or 0)
