from __future__ import annotations

from sqlalchemy import delete, func, select

from llmgate.models.conversation import ContextSummaryRecord
from llmgate.repositories.base import BaseRepository


class ContextSummaryRepository(BaseRepository[ContextSummaryRecord]):
    model = ContextSummaryRecord

    async def latest(self, conversation_id: str) -> ContextSummaryRecord | None:
        stmt = (
            select(ContextSummaryRecord)
            .where(ContextSummaryRecord.conversation_id == conversation_id)
            .order_by(ContextSummaryRecord.version.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def max_version(self, conversation_id: str) -> int:
        result = await self.session.execute(
            select(func.max(ContextSummaryRecord.version)).where(
                ContextSummaryRecord.conversation_id == conversation_id
            )
        )
        return int(result.scalar() or 0)

    async def insert_version(
        self,
        *,
        conversation_id: str,
        version: int,
        summary_json: str,
    ) -> ContextSummaryRecord:
        """插入新版本；版本冲突时由唯一约束抛 IntegrityError"""
        return await self.create(
            {
                "conversation_id": conversation_id,
                "version": version,
                "summary": summary_json,
            }
        )

    async def delete_for(self, conversation_id: str) -> int:
        result = await self.session.execute(
            delete(ContextSummaryRecord).where(
                ContextSummaryRecord.conversation_id == conversation_id
            )
        )
        return int(result.rowcount or 0)
