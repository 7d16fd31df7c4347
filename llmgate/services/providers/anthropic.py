from __future__ import annotations

from typing import Any

from llmgate.schemas.llm import LLMRequest, ModelConfig, ProviderCompletion
from llmgate.services.providers.http_base import HTTPProviderClient


class AnthropicClient(HTTPProviderClient):
    """Anthropic Messages API 客户端"""

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["x-api-key"] = self.api_key
        headers["anthropic-version"] = self.settings.ANTHROPIC_API_VERSION
        return headers

    def build_body(self, request: LLMRequest, model: ModelConfig) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": model.api_model_name,
            "max_tokens": request.max_tokens or self.settings.LLM_DEFAULT_MAX_TOKENS,
            "temperature": (
                request.temperature
                if request.temperature is not None
                else self.settings.LLM_DEFAULT_TEMPERATURE
            ),
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system_prompt:
            body["system"] = request.system_prompt
        return body

    async def call(self, request: LLMRequest, model: ModelConfig) -> ProviderCompletion:
        data = await self._post_json("messages", self.build_body(request, model))

        blocks = data.get("content") or []
        content = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        return ProviderCompletion(
            content=content,
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
        )
