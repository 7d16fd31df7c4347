"""
可观察性事件与 Prometheus 指标封装

目的：
- 每一次上游尝试（无论成败）都产出一个 UpstreamAttemptEvent
- 每一次会话上下文变更都产出一个 ContextMutationEvent
- 默认 sink 写 Prometheus 指标并打一条结构化日志；测试中可替换为收集器
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from llmgate.core.logging import logger


@dataclass(frozen=True, slots=True)
class UpstreamAttemptEvent:
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    duration_ms: float
    success: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ContextMutationEvent:
    conversation_id: str
    summary_version: int | None
    message_count: int | None
    operation: str = "unknown"


class ObservabilitySink(Protocol):
    def record_attempt(self, event: UpstreamAttemptEvent) -> None: ...

    def record_context_mutation(self, event: ContextMutationEvent) -> None: ...


class NullSink:
    """丢弃所有事件"""

    def record_attempt(self, event: UpstreamAttemptEvent) -> None:
        return None

    def record_context_mutation(self, event: ContextMutationEvent) -> None:
        return None


class PrometheusSink:
    """
    Prometheus 指标 sink

    每个实例持有独立的注册表，便于单元测试互不干扰。
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.upstream_latency = Histogram(
            "llmgate_upstream_latency_seconds",
            "上游调用耗时",
            ["provider", "model", "success"],
            registry=self.registry,
        )
        self.upstream_failures = Counter(
            "llmgate_upstream_failures_total",
            "上游失败计数",
            ["provider", "model", "error"],
            registry=self.registry,
        )
        self.upstream_tokens = Counter(
            "llmgate_upstream_tokens_total",
            "上游 token 用量（可能为估算值）",
            ["provider", "model", "direction"],
            registry=self.registry,
        )
        self.upstream_cost = Counter(
            "llmgate_upstream_cost_total",
            "上游估算成本",
            ["provider", "model"],
            registry=self.registry,
        )
        self.context_mutations = Counter(
            "llmgate_context_mutations_total",
            "会话上下文变更计数",
            ["operation"],
            registry=self.registry,
        )

    def record_attempt(self, event: UpstreamAttemptEvent) -> None:
        try:
            self.upstream_latency.labels(
                provider=event.provider, model=event.model, success=str(event.success)
            ).observe(event.duration_ms / 1000.0)
            if event.success:
                self.upstream_tokens.labels(
                    provider=event.provider, model=event.model, direction="input"
                ).inc(event.input_tokens)
                self.upstream_tokens.labels(
                    provider=event.provider, model=event.model, direction="output"
                ).inc(event.output_tokens)
                self.upstream_cost.labels(
                    provider=event.provider, model=event.model
                ).inc(event.cost)
            else:
                self.upstream_failures.labels(
                    provider=event.provider,
                    model=event.model,
                    error=event.error or "unknown",
                ).inc()
        except Exception as exc:
            logger.warning(f"record_attempt metrics failed: {exc}")

        logger.debug(
            f"upstream_attempt provider={event.provider} model={event.model} "
            f"success={event.success} duration_ms={event.duration_ms:.2f} "
            f"input_tokens={event.input_tokens} output_tokens={event.output_tokens} "
            f"cost={event.cost:.6f} error={event.error}"
        )

    def record_context_mutation(self, event: ContextMutationEvent) -> None:
        try:
            self.context_mutations.labels(operation=event.operation).inc()
        except Exception as exc:
            logger.warning(f"record_context_mutation metrics failed: {exc}")

        logger.debug(
            f"context_mutation conversation={event.conversation_id} op={event.operation} "
            f"summary_version={event.summary_version} message_count={event.message_count}"
        )

    def content(self) -> bytes:
        """导出 Prometheus 指标"""
        return generate_latest(self.registry)


class RequestTimer:
    """便捷计时器"""

    def __init__(self) -> None:
        self.start = time.perf_counter()

    def milliseconds(self) -> float:
        return (time.perf_counter() - self.start) * 1000
