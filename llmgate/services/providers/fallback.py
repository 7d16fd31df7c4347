"""
兜底调用链

候选顺序：主供应商 -> 中转供应商（按原供应商映射替代模型）-> 本地模型（最后兜底）。
循环遍历有限的候选列表，并用 attempted 集合保证同一供应商在一次调用中至多尝试一次。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from llmgate.core.config import Settings, settings as default_settings
from llmgate.core.logging import logger
from llmgate.core.metrics import NullSink, ObservabilitySink, RequestTimer, UpstreamAttemptEvent
from llmgate.schemas.llm import LLMRequest, LLMResponse, ModelConfig, ProviderCompletion
from llmgate.services.providers.client import calculate_cost, estimate_tokens
from llmgate.services.providers.errors import (
    AllProvidersFailed,
    FallbackCancelled,
    ProviderTimeoutError,
    is_infrastructure_failure,
)
from llmgate.services.providers.health_tracker import ProviderHealthTracker
from llmgate.services.providers.registry import ProviderClientRegistry


@dataclass(frozen=True, slots=True)
class Candidate:
    provider: str
    model: ModelConfig
    last_resort: bool = False


def make_fallback_model(primary: ModelConfig, provider: str, api_model_name: str) -> ModelConfig:
    """兜底模型配置：零定价（成本仅为估算），继承主模型的层级与上下文窗口"""
    return ModelConfig(
        id=f"{provider}-fallback-{api_model_name}",
        provider_name=provider,
        api_model_name=api_model_name,
        tier=primary.tier,
        price_per_1k_input_tokens=0.0,
        price_per_1k_output_tokens=0.0,
        context_window=primary.context_window,
        enabled=True,
    )


class FallbackInvoker:
    def __init__(
        self,
        registry: ProviderClientRegistry,
        health_tracker: ProviderHealthTracker,
        settings: Settings | None = None,
        sink: ObservabilitySink | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.registry = registry
        self.health_tracker = health_tracker
        self.sink = sink or NullSink()
        self.timeout = self.settings.LLM_CALL_TIMEOUT_SECONDS

    def build_candidates(self, primary: ModelConfig) -> list[Candidate]:
        """按顺序生成去重后的候选列表；除主供应商外，最后一个候选为最后兜底"""
        candidates: list[Candidate] = [Candidate(primary.provider_name, primary)]

        relay = self.settings.RELAY_PROVIDER
        relay_model = self.settings.RELAY_REPLACEMENT_MODELS.get(
            primary.provider_name, self.settings.RELAY_DEFAULT_MODEL
        )
        if relay and relay_model:
            candidates.append(Candidate(relay, make_fallback_model(primary, relay, relay_model)))

        if self.settings.LOCAL_MODEL_ENABLED and self.settings.LOCAL_PROVIDER:
            local = self.settings.LOCAL_PROVIDER
            candidates.append(
                Candidate(local, make_fallback_model(primary, local, self.settings.LOCAL_MODEL_NAME))
            )

        seen: set[str] = set()
        unique: list[Candidate] = []
        for candidate in candidates:
            if candidate.provider in seen:
                continue
            seen.add(candidate.provider)
            unique.append(candidate)

        if len(unique) > 1:
            last = unique[-1]
            unique[-1] = Candidate(last.provider, last.model, last_resort=True)
        return unique

    async def call(
        self,
        request: LLMRequest,
        primary_model: ModelConfig,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> LLMResponse:
        """
        执行带兜底的调用

        - 基础设施类失败：标记不健康并尝试下一个候选
        - 应用类失败：立即抛出，不影响健康状态
        - 候选耗尽：抛出 AllProvidersFailed
        - cancel_event 被置位：在下一次尝试前抛出 FallbackCancelled
        """
        attempted: set[str] = set()
        errors: list[str] = []

        for candidate in self.build_candidates(primary_model):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Fallback chain cancelled model={primary_model.id}")
                raise FallbackCancelled(primary_model.id)

            provider = candidate.provider
            if provider in attempted:
                continue

            if not self.health_tracker.is_healthy(provider):
                if not (candidate.last_resort and self.health_tracker.can_retry(provider)):
                    logger.info(f"Skipping unhealthy provider={provider} model={primary_model.id}")
                    errors.append(f"{provider}: unhealthy, skipped")
                    continue
                logger.info(f"Retrying last-resort provider={provider} after cooldown")

            if not self.registry.has(provider):
                logger.warning(f"No client registered for provider={provider}, skipping")
                errors.append(f"{provider}: no client registered")
                continue

            attempted.add(provider)
            client = self.registry.get(provider)
            timer = RequestTimer()
            try:
                completion = await asyncio.wait_for(
                    client.call(request, candidate.model), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                exc = ProviderTimeoutError(provider, self.timeout)
                self._on_timeout(candidate, exc, timer)
                errors.append(f"{provider}: {exc}")
                continue
            except Exception as exc:
                self._emit(candidate, timer, success=False, error=type(exc).__name__)
                if not is_infrastructure_failure(exc):
                    logger.warning(
                        f"Application error from provider={provider} model={candidate.model.id}: {exc}"
                    )
                    raise
                self.health_tracker.mark_unhealthy(provider, str(exc))
                logger.warning(
                    f"Provider {provider} failed model={candidate.model.id}: {exc}, trying next candidate"
                )
                errors.append(f"{provider}: {exc}")
                continue

            response = self._build_response(request, candidate, completion)
            self._emit(
                candidate,
                timer,
                success=True,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                cost=response.cost,
            )
            if provider != primary_model.provider_name:
                logger.info(
                    f"Fallback succeeded provider={provider} model={candidate.model.id} "
                    f"primary={primary_model.id}"
                )
            return response

        logger.error(f"All providers failed model={primary_model.id} errors={errors}")
        raise AllProvidersFailed(primary_model.id, errors)

    def _on_timeout(self, candidate: Candidate, exc: Exception, timer: RequestTimer) -> None:
        self._emit(candidate, timer, success=False, error=type(exc).__name__)
        self.health_tracker.mark_unhealthy(candidate.provider, str(exc))
        logger.warning(f"Provider {candidate.provider} timed out model={candidate.model.id}")

    def _build_response(
        self, request: LLMRequest, candidate: Candidate, completion: ProviderCompletion
    ) -> LLMResponse:
        input_tokens = completion.input_tokens
        output_tokens = completion.output_tokens
        estimated = input_tokens is None or output_tokens is None
        if input_tokens is None:
            input_tokens = estimate_tokens((request.system_prompt or "") + request.prompt)
        if output_tokens is None:
            output_tokens = estimate_tokens(completion.content)

        return LLMResponse(
            content=completion.content,
            provider_name=candidate.provider,
            model_id=candidate.model.id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=calculate_cost(input_tokens, output_tokens, candidate.model),
            tokens_estimated=estimated,
        )

    def _emit(
        self,
        candidate: Candidate,
        timer: RequestTimer,
        *,
        success: bool,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cost: float = 0.0,
        error: str | None = None,
    ) -> None:
        event = UpstreamAttemptEvent(
            provider=candidate.provider,
            model=candidate.model.id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
            duration_ms=timer.milliseconds(),
            success=success,
            error=error,
        )
        try:
            self.sink.record_attempt(event)
        except Exception as exc:
            logger.warning(f"Observability sink failed: {exc}")
