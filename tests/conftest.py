"""
测试全局配置

- 不连接真实 Redis：热层统一使用内存 DummyRedis
- 冷层使用 aiosqlite 内存库 + StaticPool，每个测试独立建表
"""
from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from llmgate.core.cache import HotCache
from llmgate.core.config import Settings
from llmgate.core.database import build_engine, build_session_factory
from llmgate.models import Base
from llmgate.services.conversation.context_store import ConversationContextStore


class DummyRedis:
    """
    轻量内存 Redis 替身，覆盖 HotCache 用到的方法：
    - get/set/delete/exists/mget/aclose
    - 记录 set 的过期时间与 delete 调用，便于断言
    """

    def __init__(self):
        self.store: dict[str, Any] = {}
        self.expirations: dict[str, int | None] = {}
        self.delete_calls: list[tuple[str, ...]] = []
        self.closed = False

    async def get(self, key: str):
        return self.store.get(key)

    async def set(self, key: str, value, ex=None, nx: bool | None = None):
        if nx and key in self.store:
            return False
        self.store[key] = value
        self.expirations[key] = ex
        return True

    async def delete(self, *keys):
        self.delete_calls.append(tuple(keys))
        removed = 0
        for k in keys:
            removed += 1 if self.store.pop(k, None) is not None else 0
            self.expirations.pop(k, None)
        return removed

    async def exists(self, *keys):
        return sum(1 for k in keys if k in self.store)

    async def mget(self, keys):
        return [self.store.get(k) for k in keys]

    async def aclose(self):
        self.closed = True


class FailingRedis:
    """所有操作都抛连接异常，模拟 Redis 不可用"""

    async def _fail(self, *args, **kwargs):
        raise ConnectionError("redis unavailable")

    get = set = delete = exists = mget = _fail

    async def aclose(self):
        return None


def make_settings(**overrides) -> Settings:
    values: dict[str, Any] = {
        "REDIS_URL": "",
        "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
        "LOG_LEVEL": "DEBUG",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def dummy_redis() -> DummyRedis:
    return DummyRedis()


@pytest.fixture
def hot_cache(test_settings, dummy_redis) -> HotCache:
    return HotCache(test_settings, redis=dummy_redis)


@pytest_asyncio.fixture
async def engine(test_settings):
    engine = build_engine(
        test_settings,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


class CollectingSink:
    """收集可观察性事件"""

    def __init__(self):
        self.attempts = []
        self.mutations = []

    def record_attempt(self, event):
        self.attempts.append(event)

    def record_context_mutation(self, event):
        self.mutations.append(event)


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def store(hot_cache, session_factory, test_settings, sink) -> ConversationContextStore:
    return ConversationContextStore(hot_cache, session_factory, test_settings, sink=sink)
