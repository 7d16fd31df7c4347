from __future__ import annotations

from collections.abc import Iterable

import httpx

from llmgate.core.config import Settings, settings as default_settings
from llmgate.core.logging import logger
from llmgate.services.providers.anthropic import AnthropicClient
from llmgate.services.providers.client import LLMClient
from llmgate.services.providers.errors import ProviderNotRegisteredError
from llmgate.services.providers.openai_compatible import OpenAICompatibleClient


class ProviderClientRegistry:
    """
    按供应商名索引的客户端注册表

    启动时一次性注册，调用期只做字典查找。
    """

    def __init__(self, clients: Iterable[LLMClient] | None = None) -> None:
        self._clients: dict[str, LLMClient] = {}
        for client in clients or []:
            self.register(client)

    def register(self, client: LLMClient) -> None:
        name = client.provider_name
        if name in self._clients:
            raise ValueError(f"Provider client already registered: {name}")
        if not client.can_handle(name):
            raise ValueError(f"Client for {name} refuses its own provider name")
        self._clients[name] = client
        logger.info(f"LLM client registered provider={name}")

    def get(self, provider: str) -> LLMClient:
        client = self._clients.get(provider)
        if client is None:
            raise ProviderNotRegisteredError(f"No client found for provider: {provider}")
        return client

    def has(self, provider: str) -> bool:
        return provider in self._clients

    def names(self) -> list[str]:
        return list(self._clients)

    def clients(self) -> list[LLMClient]:
        return list(self._clients.values())


def build_default_registry(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderClientRegistry:
    """
    按配置注册内置客户端：有凭证的云端供应商，以及启用时的本地模型
    """
    settings = settings or default_settings
    registry = ProviderClientRegistry()

    if settings.OPENAI_API_KEY:
        registry.register(
            OpenAICompatibleClient(
                "openai",
                settings.OPENAI_BASE_URL,
                settings.OPENAI_API_KEY,
                settings=settings,
                transport=transport,
            )
        )
    if settings.ANTHROPIC_API_KEY:
        registry.register(
            AnthropicClient(
                "anthropic",
                settings.ANTHROPIC_BASE_URL,
                settings.ANTHROPIC_API_KEY,
                settings=settings,
                transport=transport,
            )
        )
    if settings.OPENROUTER_API_KEY and settings.RELAY_PROVIDER:
        registry.register(
            OpenAICompatibleClient(
                settings.RELAY_PROVIDER,
                settings.OPENROUTER_BASE_URL,
                settings.OPENROUTER_API_KEY,
                settings=settings,
                transport=transport,
                extra_headers={"X-Title": settings.PROJECT_NAME},
            )
        )
    if settings.LOCAL_MODEL_ENABLED and settings.LOCAL_PROVIDER:
        registry.register(
            OpenAICompatibleClient(
                settings.LOCAL_PROVIDER,
                settings.LOCAL_MODEL_ENDPOINT,
                None,
                settings=settings,
                transport=transport,
                requires_api_key=False,
            )
        )

    if not registry.names():
        logger.warning("No LLM provider configured, every call will fail")
    return registry
