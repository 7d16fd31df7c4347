from __future__ import annotations

from typing import Any

import httpx


def create_async_http_client(
    *,
    timeout: float | httpx.Timeout | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    **client_kwargs: Any,
) -> httpx.AsyncClient:
    """
    创建供应商调用使用的 httpx.AsyncClient。

    - transport 允许注入 httpx.MockTransport 等替身（测试用）。
    - 超时由调用方显式给出，避免无界等待。
    """
    return httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        **client_kwargs,
    )
