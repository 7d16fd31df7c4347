"""
供应商健康追踪

状态机只有两条边：
- Healthy --(连续失败次数 >= 阈值)--> Unhealthy
- Unhealthy --(reset 或主动探测成功)--> Healthy

写操作持有进程内锁，读操作不加锁（只读取单个字段引用）。
本模块对外从不抛异常：探测异常、探测超时一律记为探测失败。
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from llmgate.core.config import Settings, settings as default_settings
from llmgate.core.logging import logger
from llmgate.schemas.llm import ProviderHealthStatus
from llmgate.utils.time_utils import Datetime

HealthProbe = Callable[[], Awaitable[bool]]


@dataclass
class ProviderHealth:
    provider_name: str
    healthy: bool = True
    consecutive_failures: int = 0
    last_failure_at: datetime | None = None
    last_probe_at: datetime | None = None
    # 单调时钟，用于冷却判断，不受系统时间调整影响
    last_failure_monotonic: float | None = field(default=None, repr=False)

    def snapshot(self) -> ProviderHealthStatus:
        return ProviderHealthStatus(
            provider_name=self.provider_name,
            healthy=self.healthy,
            consecutive_failures=self.consecutive_failures,
            last_failure_at=self.last_failure_at,
            last_probe_at=self.last_probe_at,
        )


class ProviderHealthTracker:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        failure_threshold: int | None = None,
        retry_cooldown_seconds: float | None = None,
        probe_timeout_seconds: float | None = None,
    ) -> None:
        settings = settings or default_settings
        self.failure_threshold = max(
            1, failure_threshold if failure_threshold is not None else settings.HEALTH_FAILURE_THRESHOLD
        )
        self.retry_cooldown_seconds = (
            retry_cooldown_seconds
            if retry_cooldown_seconds is not None
            else settings.HEALTH_RETRY_COOLDOWN_SECONDS
        )
        self.probe_timeout_seconds = (
            probe_timeout_seconds
            if probe_timeout_seconds is not None
            else settings.HEALTH_PROBE_TIMEOUT_SECONDS
        )
        self._records: dict[str, ProviderHealth] = {}
        self._probes: dict[str, HealthProbe] = {}
        self._lock = threading.Lock()

    # ===== 读 =====

    def is_healthy(self, provider: str) -> bool:
        """未见过的供应商默认健康"""
        record = self._records.get(provider)
        return True if record is None else record.healthy

    def can_retry(self, provider: str) -> bool:
        """健康，或距上次失败已超过冷却时间"""
        record = self._records.get(provider)
        if record is None or record.healthy:
            return True
        if record.last_failure_monotonic is None:
            return True
        return time.monotonic() - record.last_failure_monotonic >= self.retry_cooldown_seconds

    def known_providers(self) -> list[str]:
        return sorted(set(self._records) | set(self._probes))

    def healthy_providers(self) -> list[str]:
        return [p for p in self.known_providers() if self.is_healthy(p)]

    def status_summary(self) -> dict[str, ProviderHealthStatus]:
        """只读快照；修改返回值不影响内部状态"""
        records = list(self._records.values())
        summary = {r.provider_name: r.snapshot() for r in records}
        for provider in self._probes:
            summary.setdefault(
                provider, ProviderHealthStatus(provider_name=provider, healthy=True)
            )
        return summary

    # ===== 写 =====

    def register_probe(self, provider: str, probe: HealthProbe) -> None:
        with self._lock:
            self._probes[provider] = probe

    def mark_unhealthy(self, provider: str, reason: str | None = None) -> None:
        """
        记录一次基础设施类失败，达到阈值后判定为不健康

        只应由调用方在超时/连接失败/5xx/鉴权失败时调用。
        """
        with self._lock:
            record = self._records.setdefault(provider, ProviderHealth(provider_name=provider))
            record.consecutive_failures += 1
            record.last_failure_at = Datetime.now()
            record.last_failure_monotonic = time.monotonic()
            tripped = record.healthy and record.consecutive_failures >= self.failure_threshold
            if tripped:
                record.healthy = False
            failures = record.consecutive_failures

        if tripped:
            logger.warning(
                f"Provider {provider} marked as unhealthy "
                f"failures={failures} reason={reason}"
            )
        else:
            logger.info(
                f"Provider {provider} failure recorded "
                f"failures={failures}/{self.failure_threshold} reason={reason}"
            )

    def reset(self, provider: str) -> None:
        """人工干预：强制恢复健康并清零计数"""
        with self._lock:
            record = self._records.setdefault(provider, ProviderHealth(provider_name=provider))
            record.healthy = True
            record.consecutive_failures = 0
            record.last_failure_monotonic = None
        logger.info(f"Provider {provider} health reset")

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    # ===== 主动探测 =====

    async def refresh_all(self) -> dict[str, bool]:
        """
        对所有已注册探测的供应商执行一次探测，等待全部完成后返回结果

        未注册探测的供应商无法主动验证，保持原状态。
        """
        providers = list(self._probes.items())
        if not providers:
            return {}

        logger.info("Checking LLM provider connectivity...")
        results = await asyncio.gather(
            *(self._run_probe(name, probe) for name, probe in providers)
        )
        outcome = dict(zip((name for name, _ in providers), results))

        for name, ok in outcome.items():
            self._apply_probe_result(name, ok)
            logger.info(f"{name}: {'available' if ok else 'unavailable'}")
        return outcome

    async def _run_probe(self, provider: str, probe: HealthProbe) -> bool:
        try:
            return bool(await asyncio.wait_for(probe(), timeout=self.probe_timeout_seconds))
        except asyncio.TimeoutError:
            logger.warning(f"Health check timed out for {provider}")
            return False
        except Exception as exc:
            logger.warning(f"Health check failed for {provider}: {exc}")
            return False

    def _apply_probe_result(self, provider: str, ok: bool) -> None:
        now = Datetime.now()
        with self._lock:
            record = self._records.setdefault(provider, ProviderHealth(provider_name=provider))
            record.last_probe_at = now
            if ok:
                record.healthy = True
                record.consecutive_failures = 0
                record.last_failure_monotonic = None
            else:
                record.healthy = False
                record.consecutive_failures += 1
                record.last_failure_at = now
                record.last_failure_monotonic = time.monotonic()
