from __future__ import annotations

from datetime import datetime

from pydantic import Field

from llmgate.schemas.base import BaseSchema, FrozenSchema


class ModelConfig(FrozenSchema):
    """
    模型配置（由外部路由策略提供，本层只读）
    """
    id: str
    provider_name: str
    api_model_name: str
    tier: str = "L0"
    price_per_1k_input_tokens: float = Field(default=0.0, ge=0)
    price_per_1k_output_tokens: float = Field(default=0.0, ge=0)
    context_window: int | None = None
    enabled: bool = True


class LLMRequest(BaseSchema):
    prompt: str
    system_prompt: str | None = None
    max_tokens: int | None = Field(default=None, gt=0)
    temperature: float | None = Field(default=None, ge=0, le=2)


class ProviderCompletion(BaseSchema):
    """
    供应商客户端的原始返回

    usage 缺失时 token 字段为 None，由调用链统一估算。
    """
    content: str
    input_tokens: int | None = None
    output_tokens: int | None = None


class LLMResponse(FrozenSchema):
    content: str
    provider_name: str
    model_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    # True 表示 token（及成本）为按字符数估算，而非供应商上报
    tokens_estimated: bool = False


class ProviderHealthStatus(FrozenSchema):
    """健康状态只读快照"""
    provider_name: str
    healthy: bool
    consecutive_failures: int = 0
    last_failure_at: datetime | None = None
    last_probe_at: datetime | None = None
