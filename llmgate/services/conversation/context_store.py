"""
两级会话上下文存储

- 热层：Redis（HotCache），按 key 族显式定义 JSON schema 与 TTL
- 冷层：SQLAlchemy（conversations / messages / context_summaries / todo_items），权威数据
- 读：先热后冷，冷层命中后回填热层
- 写：写穿透，热写与冷写并发发出，互不等待
- 任何热层 / 冷层异常都在此处吞掉并记录日志，不影响调用方主流程
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from llmgate.core.cache import HotCache
from llmgate.core.cache_keys import CacheKeys
from llmgate.core.config import Settings, settings as default_settings
from llmgate.core.logging import logger
from llmgate.core.metrics import ContextMutationEvent, NullSink, ObservabilitySink
from llmgate.models.conversation import ConversationMessage, ContextSummaryRecord, TodoStatus
from llmgate.repositories import (
    ContextSummaryRepository,
    ConversationMessageRepository,
    ConversationRepository,
    TodoItemRepository,
)
from llmgate.schemas.context import ContextMessage, ContextSummary, ConversationMeta, TodoItem
from llmgate.utils.time_utils import Datetime

T = TypeVar("T")


@dataclass(frozen=True)
class CacheFamily(Generic[T]):
    """一类热缓存 key：key 生成、序列化 schema、TTL"""

    name: str
    key_builder: Callable[[str], str]
    adapter: TypeAdapter[T]
    ttl_seconds: int

    def key(self, conversation_id: str) -> str:
        return self.key_builder(conversation_id)

    def dumps(self, value: T) -> str:
        return self.adapter.dump_json(value).decode()

    def loads(self, raw: str) -> T:
        return self.adapter.validate_json(raw)


class ConversationContextStore:
    def __init__(
        self,
        hot_cache: HotCache,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        sink: ObservabilitySink | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.hot_cache = hot_cache
        self.session_factory = session_factory
        self.sink = sink or NullSink()

        self.hot_message_limit = max(1, self.settings.CONTEXT_HOT_MESSAGE_LIMIT)
        self.summary_family: CacheFamily[ContextSummary] = CacheFamily(
            "summary",
            CacheKeys.conversation_summary,
            TypeAdapter(ContextSummary),
            self.settings.CONTEXT_SUMMARY_TTL_SECONDS,
        )
        self.messages_family: CacheFamily[list[ContextMessage]] = CacheFamily(
            "messages",
            CacheKeys.conversation_messages,
            TypeAdapter(list[ContextMessage]),
            self.settings.CONTEXT_MESSAGES_TTL_SECONDS,
        )
        self.todos_family: CacheFamily[list[TodoItem]] = CacheFamily(
            "todos",
            CacheKeys.conversation_todos,
            TypeAdapter(list[TodoItem]),
            self.settings.CONTEXT_TODO_TTL_SECONDS,
        )
        self.meta_family: CacheFamily[ConversationMeta] = CacheFamily(
            "meta",
            CacheKeys.conversation_meta,
            TypeAdapter(ConversationMeta),
            self.settings.CONTEXT_META_TTL_SECONDS,
        )

    # ===== 摘要 =====

    async def get_summary(self, conversation_id: str) -> ContextSummary | None:
        cached = await self._hot_get(self.summary_family, conversation_id)
        if cached is not None:
            return cached

        summary = await self._cold_latest_summary(conversation_id)
        if summary is not None:
            await self._hot_set(self.summary_family, conversation_id, summary)
        return summary

    async def update_summary(
        self, conversation_id: str, summary: ContextSummary
    ) -> ContextSummary:
        """
        写入新版本摘要，返回带最终版本号与更新时间的摘要

        版本号 = 冷层当前最大版本 + 1；冷层不可读时退化为热层版本 + 1。
        """
        version = await self._next_summary_version(conversation_id)
        stamped = summary.model_copy(
            update={
                "conversation_id": conversation_id,
                "version": version,
                "last_updated": Datetime.now(),
            }
        )

        _, cold_version = await asyncio.gather(
            self._hot_set(self.summary_family, conversation_id, stamped),
            self._cold_insert_summary(conversation_id, stamped),
        )
        if cold_version is not None and cold_version != stamped.version:
            # 并发写者抢占了版本号，冷层已按新版本落库
            stamped = stamped.model_copy(update={"version": cold_version})
            await self._hot_set(self.summary_family, conversation_id, stamped)

        meta = await self._hot_get(self.meta_family, conversation_id)
        if meta is not None:
            await self._hot_set(
                self.meta_family,
                conversation_id,
                meta.model_copy(
                    update={"summary_version": stamped.version, "last_active_at": Datetime.now()}
                ),
            )

        self._emit(
            conversation_id,
            "update_summary",
            summary_version=stamped.version,
            message_count=meta.message_count if meta else None,
        )
        return stamped

    async def auto_summarize(self, conversation_id: str) -> ContextSummary | None:
        """
        合并已有摘要字段与当前任务清单，写入新版本；消息数不足阈值时不做任何事

        消息历史不会被删除。
        """
        message_count = await self.get_message_count(conversation_id)
        if message_count < self.settings.CONTEXT_AUTO_SUMMARY_THRESHOLD:
            return None

        existing = await self.get_summary(conversation_id)
        todos = await self.get_todo_list(conversation_id)
        base = existing or ContextSummary(conversation_id=conversation_id)
        summary = await self.update_summary(
            conversation_id, base.model_copy(update={"todo_items": todos})
        )
        logger.info(
            f"Auto-summarized conversation {conversation_id} "
            f"message_count={message_count} version={summary.version}"
        )
        return summary

    # ===== 消息 =====

    async def get_recent_messages(
        self, conversation_id: str, limit: int = 10
    ) -> list[ContextMessage]:
        """最近 limit 条消息（旧 -> 新），最多返回热窗口大小"""
        limit = min(int(limit), self.hot_message_limit)
        if limit <= 0:
            return []
        window = await self._load_message_window(conversation_id)
        return window[-limit:]

    async def add_message(self, conversation_id: str, message: ContextMessage) -> None:
        if message.timestamp is None:
            message = message.model_copy(update={"timestamp": Datetime.now()})

        window = await self._hot_get(self.messages_family, conversation_id)
        if window is None:
            window = await self._cold_recent_messages(conversation_id, self.hot_message_limit)
        window = [*window, message][-self.hot_message_limit :]

        _, cold = await asyncio.gather(
            self._hot_set(self.messages_family, conversation_id, window),
            self._cold_append_message(conversation_id, message),
        )

        previous = await self._hot_get(self.meta_family, conversation_id)
        if cold is not None:
            message_count, summary_version = cold
        else:
            message_count = previous.message_count + 1 if previous else len(window)
            summary_version = previous.summary_version if previous else 0
        await self._hot_set(
            self.meta_family,
            conversation_id,
            ConversationMeta(
                message_count=message_count,
                summary_version=summary_version,
                last_active_at=Datetime.now(),
            ),
        )
        self._emit(
            conversation_id,
            "add_message",
            summary_version=summary_version,
            message_count=message_count,
        )

        threshold = self.settings.CONTEXT_AUTO_SUMMARY_THRESHOLD
        if threshold > 0 and message_count >= threshold and message_count % threshold == 0:
            try:
                await self.auto_summarize(conversation_id)
            except Exception as exc:
                logger.error(f"Auto-summarize failed for conversation {conversation_id}: {exc}")

    async def get_message_count(self, conversation_id: str) -> int:
        meta = await self.get_meta(conversation_id)
        return meta.message_count if meta else 0

    async def get_meta(self, conversation_id: str) -> ConversationMeta | None:
        cached = await self._hot_get(self.meta_family, conversation_id)
        if cached is not None:
            return cached

        meta = await self._cold_meta(conversation_id)
        if meta is not None:
            await self._hot_set(self.meta_family, conversation_id, meta)
        return meta

    # ===== 任务清单 =====

    async def get_todo_list(self, conversation_id: str) -> list[TodoItem]:
        cached = await self._hot_get(self.todos_family, conversation_id)
        if cached is not None:
            return cached

        todos = await self._cold_todos(conversation_id)
        if todos:
            await self._hot_set(self.todos_family, conversation_id, todos)
        return todos

    async def update_todo_list(self, conversation_id: str, todos: Sequence[TodoItem]) -> None:
        items = list(todos)
        await asyncio.gather(
            self._hot_set(self.todos_family, conversation_id, items),
            self._cold_replace_todos(conversation_id, items),
        )
        self._emit(conversation_id, "update_todo_list")

    # ===== 组合视图 =====

    async def compress_context(self, conversation_id: str) -> str:
        """最新摘要 + 最多 N 条最近消息，大小与会话长度无关"""
        summary = await self.get_summary(conversation_id)
        messages = await self.get_recent_messages(
            conversation_id, self.settings.CONTEXT_COMPRESS_MESSAGE_LIMIT
        )
        payload = {
            "summary": self._summary_payload(conversation_id, summary),
            "recent_messages": [m.model_dump(mode="json") for m in messages],
        }
        return json.dumps(payload, ensure_ascii=False, indent=2)

    async def build_prompt_context(self, conversation_id: str, include_messages: int = 5) -> str:
        """摘要 + 最近消息 + 未完成任务，供拼接到提示词"""
        summary = await self.get_summary(conversation_id)
        messages = await self.get_recent_messages(conversation_id, include_messages)
        todos = await self.get_todo_list(conversation_id)
        payload = {
            "summary": self._summary_payload(conversation_id, summary),
            "recent_messages": [m.model_dump(mode="json") for m in messages],
            "todos": [
                t.model_dump(mode="json")
                for t in todos
                if t.status != TodoStatus.COMPLETED.value
            ],
        }
        return json.dumps(payload, ensure_ascii=False, indent=2)

    # ===== 生命周期 =====

    async def ensure_conversation(
        self,
        conversation_id: str,
        user_id: str | None = None,
        project_id: str | None = None,
    ) -> bool:
        """确保冷层存在会话行，返回是否新建"""
        try:
            async with self.session_factory() as session:
                _, created = await ConversationRepository(session).ensure(
                    conversation_id, user_id=user_id, project_id=project_id
                )
                await session.commit()
        except Exception as exc:
            logger.error(f"Failed to ensure conversation {conversation_id}: {exc}")
            return False
        if created:
            logger.info(f"Created conversation {conversation_id}")
        return created

    async def clear_cache(self, conversation_id: str) -> None:
        """一次调用删除该会话的全部热层 key"""
        await self.hot_cache.delete(*CacheKeys.conversation_keys(conversation_id))
        logger.debug(f"Cleared hot cache for conversation {conversation_id}")

    async def delete_conversation(self, conversation_id: str) -> bool:
        deleted = False
        try:
            async with self.session_factory() as session:
                await ConversationMessageRepository(session).delete_for(conversation_id)
                await ContextSummaryRepository(session).delete_for(conversation_id)
                await TodoItemRepository(session).delete_for(conversation_id)
                deleted = await ConversationRepository(session).delete_conversation(conversation_id) > 0
                await session.commit()
        except Exception as exc:
            logger.error(f"Failed to delete conversation {conversation_id}: {exc}")

        await self.clear_cache(conversation_id)
        self._emit(conversation_id, "delete_conversation", summary_version=0, message_count=0)
        return deleted

    # ===== 热层 =====

    async def _hot_get(self, family: CacheFamily[T], conversation_id: str) -> T | None:
        key = family.key(conversation_id)
        raw = await self.hot_cache.get(key)
        if raw is None:
            return None
        try:
            return family.loads(raw)
        except ValidationError as exc:
            logger.warning(f"Discarding malformed {family.name} cache entry {key}: {exc}")
            await self.hot_cache.delete(key)
            return None

    async def _hot_set(self, family: CacheFamily[T], conversation_id: str, value: T) -> None:
        await self.hot_cache.set(
            family.key(conversation_id), family.dumps(value), ttl=family.ttl_seconds
        )

    # ===== 冷层 =====

    async def _next_summary_version(self, conversation_id: str) -> int:
        try:
            async with self.session_factory() as session:
                return await ContextSummaryRepository(session).max_version(conversation_id) + 1
        except Exception as exc:
            logger.warning(f"Failed to read summary version for {conversation_id}: {exc}")
        cached = await self._hot_get(self.summary_family, conversation_id)
        return (cached.version if cached else 0) + 1

    async def _cold_latest_summary(self, conversation_id: str) -> ContextSummary | None:
        try:
            async with self.session_factory() as session:
                record = await ContextSummaryRepository(session).latest(conversation_id)
        except Exception as exc:
            logger.error(f"Failed to load summary for {conversation_id}: {exc}")
            return None
        if record is None:
            return None
        return self._summary_from_record(record)

    async def _cold_insert_summary(
        self, conversation_id: str, summary: ContextSummary
    ) -> int | None:
        """插入摘要版本；唯一约束冲突时重新取最大版本重试，返回最终版本号"""
        version = summary.version
        attempts = max(1, self.settings.CONTEXT_SUMMARY_WRITE_RETRIES)
        for attempt in range(attempts):
            try:
                async with self.session_factory() as session:
                    conversations = ConversationRepository(session)
                    summaries = ContextSummaryRepository(session)
                    await conversations.ensure(conversation_id)
                    if attempt > 0:
                        version = await summaries.max_version(conversation_id) + 1
                    await summaries.insert_version(
                        conversation_id=conversation_id,
                        version=version,
                        summary_json=summary.model_copy(update={"version": version}).model_dump_json(),
                    )
                    await conversations.set_summary_version(conversation_id, version)
                    await session.commit()
                return version
            except IntegrityError:
                logger.info(
                    f"Summary version {version} conflict for {conversation_id}, "
                    f"retry {attempt + 1}/{attempts}"
                )
            except Exception as exc:
                logger.error(f"Failed to persist summary for {conversation_id}: {exc}")
                return None
        logger.error(f"Gave up persisting summary for {conversation_id} after {attempts} attempts")
        return None

    async def _load_message_window(self, conversation_id: str) -> list[ContextMessage]:
        cached = await self._hot_get(self.messages_family, conversation_id)
        if cached is not None:
            return cached

        messages = await self._cold_recent_messages(conversation_id, self.hot_message_limit)
        if messages:
            await self._hot_set(self.messages_family, conversation_id, messages)
        return messages

    async def _cold_recent_messages(self, conversation_id: str, limit: int) -> list[ContextMessage]:
        try:
            async with self.session_factory() as session:
                rows = await ConversationMessageRepository(session).list_recent(
                    conversation_id=conversation_id, limit=limit
                )
        except Exception as exc:
            logger.error(f"Failed to load messages for {conversation_id}: {exc}")
            return []
        return [self._message_from_row(row) for row in rows]

    async def _cold_append_message(
        self, conversation_id: str, message: ContextMessage
    ) -> tuple[int, int] | None:
        """追加消息并返回 (累计消息数, 最近摘要版本)"""
        try:
            async with self.session_factory() as session:
                conversations = ConversationRepository(session)
                messages = ConversationMessageRepository(session)
                conversation, _ = await conversations.ensure(conversation_id)
                await messages.append(
                    conversation_id=conversation_id,
                    role=message.role,
                    content=message.content,
                    meta_info=message.metadata,
                )
                await conversations.increment_message_count(conversation_id)
                count = await messages.count_for(conversation_id)
                summary_version = conversation.last_summary_version or 0
                await session.commit()
        except Exception as exc:
            logger.error(f"Failed to persist message for {conversation_id}: {exc}")
            return None
        return count, summary_version

    async def _cold_meta(self, conversation_id: str) -> ConversationMeta | None:
        try:
            async with self.session_factory() as session:
                conversation = await ConversationRepository(session).get(conversation_id)
                if conversation is None:
                    return None
                count = await ConversationMessageRepository(session).count_for(conversation_id)
        except Exception as exc:
            logger.error(f"Failed to load conversation meta for {conversation_id}: {exc}")
            return None
        return ConversationMeta(
            message_count=count,
            summary_version=conversation.last_summary_version or 0,
            last_active_at=Datetime.ensure_aware(conversation.updated_at)
            if conversation.updated_at
            else None,
        )

    async def _cold_todos(self, conversation_id: str) -> list[TodoItem]:
        try:
            async with self.session_factory() as session:
                rows = await TodoItemRepository(session).list_for(conversation_id)
        except Exception as exc:
            logger.error(f"Failed to load todo list for {conversation_id}: {exc}")
            return []
        return [
            TodoItem(
                id=row.item_id,
                title=row.title,
                description=row.description or "",
                status=row.status,
            )
            for row in rows
        ]

    async def _cold_replace_todos(self, conversation_id: str, todos: list[TodoItem]) -> None:
        try:
            async with self.session_factory() as session:
                await ConversationRepository(session).ensure(conversation_id)
                await TodoItemRepository(session).replace(conversation_id, todos)
                await session.commit()
        except Exception as exc:
            logger.error(f"Failed to persist todo list for {conversation_id}: {exc}")

    # ===== 转换 =====

    @staticmethod
    def _summary_from_record(record: ContextSummaryRecord) -> ContextSummary | None:
        try:
            summary = ContextSummary.model_validate_json(record.summary)
        except ValidationError as exc:
            logger.error(
                f"Malformed summary row conversation={record.conversation_id} "
                f"version={record.version}: {exc}"
            )
            return None
        return summary.model_copy(
            update={
                "version": record.version,
                "last_updated": summary.last_updated or Datetime.ensure_aware(record.created_at),
            }
        )

    @staticmethod
    def _message_from_row(row: ConversationMessage) -> ContextMessage:
        return ContextMessage(
            role=row.role,
            content=row.content,
            metadata=row.meta_info,
            timestamp=Datetime.ensure_aware(row.created_at) if row.created_at else None,
        )

    @staticmethod
    def _summary_payload(conversation_id: str, summary: ContextSummary | None) -> dict[str, Any]:
        if summary is None:
            return {
                "conversation_id": conversation_id,
                "last_updated": Datetime.to_iso_string(Datetime.now()),
            }
        return summary.model_dump(mode="json")

    def _emit(
        self,
        conversation_id: str,
        operation: str,
        *,
        summary_version: int | None = None,
        message_count: int | None = None,
    ) -> None:
        try:
            self.sink.record_context_mutation(
                ContextMutationEvent(
                    conversation_id=conversation_id,
                    summary_version=summary_version,
                    message_count=message_count,
                    operation=operation,
                )
            )
        except Exception as exc:
            logger.warning(f"Observability sink failed: {exc}")
