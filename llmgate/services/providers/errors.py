"""
供应商调用异常分类

- 基础设施类（超时 / 连接失败 / 5xx / 鉴权失败 / 限流）：标记供应商不健康并继续兜底链
- 应用类（请求内容非法、与请求本身相关的配额校验）：立即抛给调用方，不影响健康状态
"""

from __future__ import annotations

import asyncio

import httpx


class ProviderError(Exception):
    """供应商调用异常基类"""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
    ):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"Provider {provider} error: status={status_code}, message={message}")


class ProviderInfrastructureError(ProviderError):
    """基础设施类故障"""


class ProviderTimeoutError(ProviderInfrastructureError):
    """上游超时"""

    def __init__(self, provider: str, timeout: float):
        super().__init__(provider, f"Request timed out after {timeout}s")
        self.timeout = timeout


class ProviderApplicationError(ProviderError):
    """应用类错误，不计入健康状态"""


class ProviderNotRegisteredError(LookupError):
    """注册表中没有对应供应商的客户端"""


class AllProvidersFailed(Exception):
    """兜底链全部耗尽，调用方应视为「暂时无可用答案」"""

    def __init__(self, model_id: str, errors: list[str] | None = None):
        self.model_id = model_id
        self.errors = list(errors or [])
        detail = "; ".join(self.errors) if self.errors else "no candidate available"
        super().__init__(f"All providers failed for model {model_id}: {detail}")


class FallbackCancelled(Exception):
    """调用方取消，停止后续兜底尝试"""

    def __init__(self, model_id: str):
        self.model_id = model_id
        super().__init__(f"Fallback chain cancelled for model {model_id}")


def classify_http_error(provider: str, exc: httpx.HTTPError) -> ProviderError:
    """把 httpx 异常映射到两类供应商异常"""
    if isinstance(exc, httpx.TimeoutException):
        return ProviderInfrastructureError(provider, f"timeout: {exc}")
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = exc.response.text[:200] if exc.response is not None else ""
        if status >= 500 or status in (401, 403, 408, 429):
            return ProviderInfrastructureError(provider, body or str(exc), status_code=status)
        return ProviderApplicationError(provider, body or str(exc), status_code=status)
    # 连接失败 / 协议错误等传输层异常
    return ProviderInfrastructureError(provider, str(exc))


def is_infrastructure_failure(exc: BaseException) -> bool:
    """
    判断异常是否属于基础设施类；未知异常按基础设施类处理
    """
    if isinstance(exc, ProviderApplicationError):
        return False
    if isinstance(exc, (ProviderInfrastructureError, asyncio.TimeoutError)):
        return True
    if isinstance(exc, httpx.HTTPError):
        return isinstance(classify_http_error("unknown", exc), ProviderInfrastructureError)
    return True
