from __future__ import annotations

from typing import Any

from llmgate.schemas.llm import LLMRequest, ModelConfig, ProviderCompletion
from llmgate.services.providers.errors import ProviderInfrastructureError
from llmgate.services.providers.http_base import HTTPProviderClient


class OpenAICompatibleClient(HTTPProviderClient):
    """
    OpenAI Chat Completions 兼容客户端

    OpenAI、OpenRouter 以及 Ollama 的 /v1 兼容端点共用此实现。
    """

    def __init__(
        self,
        *args,
        requires_api_key: bool = True,
        extra_headers: dict[str, str] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.requires_api_key = requires_api_key
        self.extra_headers = dict(extra_headers or {})

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        headers.update(self.extra_headers)
        return headers

    def build_body(self, request: LLMRequest, model: ModelConfig) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})
        return {
            "model": model.api_model_name,
            "messages": messages,
            "max_tokens": request.max_tokens or self.settings.LLM_DEFAULT_MAX_TOKENS,
            "temperature": (
                request.temperature
                if request.temperature is not None
                else self.settings.LLM_DEFAULT_TEMPERATURE
            ),
            "stream": False,
        }

    async def call(self, request: LLMRequest, model: ModelConfig) -> ProviderCompletion:
        data = await self._post_json("chat/completions", self.build_body(request, model))

        choices = data.get("choices") or []
        if not choices:
            raise ProviderInfrastructureError(self.provider_name, "response has no choices")
        message = choices[0].get("message") or {}
        content = message.get("content") or ""

        usage = data.get("usage") or {}
        return ProviderCompletion(
            content=content,
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
        )
