"""
会话上下文冷存储模型

设计目标：
- conversations：会话主表，记录归属与累计消息数
- messages：原始消息记录，只追加，按自增 id 有序
- context_summaries：摘要记录，(conversation_id, version) 唯一，版本单调递增
- todo_items：会话任务清单，整体替换
"""

from __future__ import annotations

import enum
from typing import Any

from sqlalchemy import (
    JSON,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from llmgate.models.base import Base, CreatedAtMixin, TimestampMixin


class TodoStatus(str, enum.Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class Conversation(Base, TimestampMixin):
    """
    会话主表
    """

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(128), primary_key=True, comment="会话 ID（外部传入）")
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, comment="用户 ID")
    project_id: Mapped[str | None] = mapped_column(String(128), nullable=True, comment="项目 ID")
    message_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0", comment="累计消息数"
    )
    last_summary_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0", comment="最近一次摘要版本"
    )


class ConversationMessage(Base, CreatedAtMixin):
    """
    消息表：完整历史，只追加
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_id_id", "conversation_id", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        comment="关联会话 ID",
    )
    role: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="消息角色 user/assistant/system/tool"
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, comment="消息内容")
    meta_info: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True, comment="附加元数据"
    )


class ContextSummaryRecord(Base, CreatedAtMixin):
    """
    摘要表：每次更新插入新版本，读取时取最大版本
    """

    __tablename__ = "context_summaries"
    __table_args__ = (
        UniqueConstraint("conversation_id", "version", name="uq_context_summaries_version"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, comment="摘要版本（从 1 开始）")
    summary: Mapped[str] = mapped_column(Text, nullable=False, comment="摘要 JSON")


class TodoItemRecord(Base, CreatedAtMixin):
    """
    任务清单表
    """

    __tablename__ = "todo_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id: Mapped[int] = mapped_column(Integer, nullable=False, comment="调用方给出的任务编号")
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="清单内顺序")
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TodoStatus.NOT_STARTED.value
    )
