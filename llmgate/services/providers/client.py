from __future__ import annotations

import math
from typing import Protocol, runtime_checkable

from llmgate.schemas.llm import LLMRequest, ModelConfig, ProviderCompletion

# 粗略估算：约 4 个字符 1 个 token
CHARS_PER_TOKEN = 4


@runtime_checkable
class LLMClient(Protocol):
    """
    供应商客户端统一契约

    每个供应商实现一次，启动时注册到 ProviderClientRegistry。
    """

    provider_name: str

    def can_handle(self, provider: str) -> bool: ...

    async def call(self, request: LLMRequest, model: ModelConfig) -> ProviderCompletion: ...

    async def health_check(self) -> bool: ...


def estimate_tokens(text: str | None) -> int:
    """按字符数估算 token（近似值，不可用于计费）"""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def calculate_cost(input_tokens: int, output_tokens: int, model: ModelConfig) -> float:
    input_cost = (input_tokens / 1000) * model.price_per_1k_input_tokens
    output_cost = (output_tokens / 1000) * model.price_per_1k_output_tokens
    return input_cost + output_cost
