"""
组合根：显式构造并注入各服务，生命周期由 startup()/shutdown() 管理

用法:
    async with GatewayContainer().lifespan() as container:
        response = await container.invoker.call(request, model)
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from llmgate.core.cache import HotCache
from llmgate.core.config import Settings, settings as default_settings
from llmgate.core.database import build_engine, build_session_factory
from llmgate.core.logging import logger, setup_logging
from llmgate.core.metrics import ObservabilitySink, PrometheusSink
from llmgate.models.base import Base
from llmgate.services.conversation.context_store import ConversationContextStore
from llmgate.services.handoff.builder import HandoffBuilder, create_handoff_builder
from llmgate.services.providers.fallback import FallbackInvoker
from llmgate.services.providers.health_tracker import ProviderHealthTracker
from llmgate.services.providers.registry import ProviderClientRegistry, build_default_registry


class GatewayContainer:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        registry: ProviderClientRegistry | None = None,
        hot_cache: HotCache | None = None,
        engine: AsyncEngine | None = None,
        sink: ObservabilitySink | None = None,
        configure_logging: bool = True,
    ) -> None:
        self.settings = settings or default_settings
        if configure_logging:
            setup_logging(self.settings)

        self.sink = sink or PrometheusSink()
        self.registry = registry or build_default_registry(self.settings)
        self.health_tracker = ProviderHealthTracker(self.settings)
        for client in self.registry.clients():
            self.health_tracker.register_probe(client.provider_name, client.health_check)

        self.hot_cache = hot_cache or HotCache(self.settings)
        self.engine = engine or build_engine(self.settings)
        self.session_factory: async_sessionmaker[AsyncSession] = build_session_factory(self.engine)

        self.invoker = FallbackInvoker(
            self.registry, self.health_tracker, self.settings, sink=self.sink
        )
        self.context_store = ConversationContextStore(
            self.hot_cache, self.session_factory, self.settings, sink=self.sink
        )

    def handoff_builder(self) -> HandoffBuilder:
        return create_handoff_builder(self.settings)

    async def startup(self, *, create_tables: bool = True, probe_providers: bool = True) -> None:
        logger.info(f"{self.settings.PROJECT_NAME} startup environment={self.settings.ENVIRONMENT}")
        try:
            self.hot_cache.init()
        except Exception as exc:
            logger.warning(f"cache_init_failed: {exc}")

        if create_tables:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        if probe_providers:
            await self.health_tracker.refresh_all()

    async def shutdown(self) -> None:
        try:
            await self.hot_cache.close()
        except Exception as exc:
            logger.warning(f"cache_close_failed: {exc}")
        await self.engine.dispose()
        logger.info(f"{self.settings.PROJECT_NAME} shutdown")

    @asynccontextmanager
    async def lifespan(self, **startup_kwargs) -> AsyncIterator[GatewayContainer]:
        await self.startup(**startup_kwargs)
        try:
            yield self
        finally:
            await self.shutdown()
