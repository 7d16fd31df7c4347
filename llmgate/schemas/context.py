from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from llmgate.schemas.base import BaseSchema

MessageRoleLiteral = Literal["user", "assistant", "system", "tool"]
TodoStatusLiteral = Literal["not-started", "in-progress", "completed"]


class TodoItem(BaseSchema):
    id: int
    title: str
    description: str = ""
    status: TodoStatusLiteral = "not-started"


class ContextMessage(BaseSchema):
    role: MessageRoleLiteral
    content: str
    metadata: dict[str, Any] | None = None
    timestamp: datetime | None = None


class ContextSummary(BaseSchema):
    """
    会话摘要

    version / last_updated 由存储层在每次写入时刷新，调用方传入的值会被覆盖。
    """
    conversation_id: str
    stack: list[str] = Field(default_factory=list)
    architecture: str | None = None
    modules: list[str] = Field(default_factory=list)
    main_files: list[str] = Field(default_factory=list)
    decisions: list[str] = Field(default_factory=list)
    todo_items: list[TodoItem] = Field(default_factory=list)
    version: int = 0
    last_updated: datetime | None = None


class ConversationMeta(BaseSchema):
    """热缓存中的会话元信息"""
    message_count: int = 0
    summary_version: int = 0
    last_active_at: datetime | None = None
