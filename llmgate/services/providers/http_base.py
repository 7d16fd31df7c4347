from __future__ import annotations

from typing import Any

import httpx

from llmgate.core.config import Settings, settings as default_settings
from llmgate.core.http_client import create_async_http_client
from llmgate.core.logging import logger
from llmgate.services.providers.errors import (
    ProviderInfrastructureError,
    classify_http_error,
)


class HTTPProviderClient:
    """
    基于 httpx 的供应商客户端基类

    子类只负责组装请求体和解析响应；超时、状态码与传输异常的分类在这里统一处理。
    """

    requires_api_key: bool = True

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        api_key: str | None = None,
        *,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.provider_name = provider_name
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = self.settings.LLM_CALL_TIMEOUT_SECONDS
        self._transport = transport

    def can_handle(self, provider: str) -> bool:
        return provider == self.provider_name

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _ensure_configured(self) -> None:
        if self.requires_api_key and not self.api_key:
            raise ProviderInfrastructureError(
                self.provider_name, "API key is not configured", status_code=401
            )

    async def _post_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        self._ensure_configured()
        url = self._url(path)
        async with create_async_http_client(
            timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                response = await client.post(url, json=body, headers=self._headers())
                response.raise_for_status()
            except httpx.HTTPError as exc:
                logger.warning(
                    f"{self.provider_name} API error model={body.get('model')} error={exc}"
                )
                raise classify_http_error(self.provider_name, exc) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderInfrastructureError(
                self.provider_name, f"invalid JSON response: {exc}", response.status_code
            ) from exc
        if not isinstance(data, dict):
            raise ProviderInfrastructureError(
                self.provider_name, "unexpected response shape", response.status_code
            )
        return data

    async def health_check(self) -> bool:
        """
        探测 /models：200/401/404 都说明服务可达，5xx 或连接失败视为不可用
        """
        if self.requires_api_key and not self.api_key:
            return False
        try:
            async with create_async_http_client(
                timeout=self.settings.HEALTH_PROBE_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                resp = await client.get(self._url("models"), headers=self._headers())
            return resp.status_code < 500
        except httpx.HTTPError as exc:
            logger.warning(f"Health probe failed for {self.provider_name}: {exc}")
            return False
