from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.engine import Result
from sqlalchemy.ext.asyncio import AsyncSession

from llmgate.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """通用异步 Repository 基类

    仓库以 `Repo(session)` 的形式初始化，模型通过子类的 `model` 属性注入。
    写方法只 flush 不 commit，事务边界由调用方（存储服务）控制，
    便于把「确保会话存在 + 写消息 + 计数」放进同一个事务。
    """

    model: type[ModelType]  # 子类应覆盖

    def __init__(
        self,
        session: AsyncSession,
        model: type[ModelType] | None = None,
    ):
        self.session = session
        self.model = model or getattr(self, "model", None)
        if self.model is None:
            raise ValueError("model must be provided for BaseRepository")

    async def create(self, obj_in: dict[str, Any]) -> ModelType:
        db_obj = self.model(**obj_in)
        self.session.add(db_obj)
        await self.session.flush()
        return db_obj

    async def get(self, id: Any) -> ModelType | None:
        result: Result = await self.session.execute(
            select(self.model).where(self.model.id == id)
        )
        return result.scalars().first()
