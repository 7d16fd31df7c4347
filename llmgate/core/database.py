from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from llmgate.core.config import Settings, settings as default_settings


def build_engine(settings: Settings | None = None, url: str | None = None, **kwargs) -> AsyncEngine:
    """创建异步引擎"""
    settings = settings or default_settings
    db_url = url or settings.DATABASE_URL
    engine_kwargs = {
        "echo": settings.DEBUG,
        "future": True,
        "pool_pre_ping": True,
    }
    # 连接池配置（仅非 sqlite 场景启用）
    if not db_url.startswith("sqlite"):
        engine_kwargs.update(pool_size=20, max_overflow=10)
    engine_kwargs.update(kwargs)
    return create_async_engine(db_url, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """创建异步 Session 工厂"""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
