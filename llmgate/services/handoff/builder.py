"""
升级交接包构建器

低层级模型多次尝试仍未解决时，把上下文、尝试记录、测试结果等有界地打包给更高层级。
文本（build）与结构化（build_json）输出来自同一份累积状态；截断在累积时完成，两者一致。
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from llmgate.core.config import Settings, settings as default_settings
from llmgate.schemas.context import ContextSummary
from llmgate.schemas.handoff import AttemptInfo, HandoffPackage, TestRunResult

ELLIPSIS = "..."


class HandoffBuilderSealedError(RuntimeError):
    """构建器在 build 之后不可再修改"""


def truncate_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + ELLIPSIS


def render_context_summary(summary: ContextSummary) -> str:
    lines = ["## Project Context"]
    if summary.stack:
        lines.append(f"**Stack:** {', '.join(summary.stack)}")
    if summary.architecture:
        lines.append(f"**Architecture:** {summary.architecture}")
    if summary.modules:
        lines.append(f"**Modules:** {', '.join(summary.modules)}")
    if summary.main_files:
        lines.append(f"**Main Files:** {', '.join(summary.main_files)}")
    if summary.decisions:
        lines.append("\n**Key Decisions:**")
        lines.extend(f"- {d}" for d in summary.decisions)
    return "\n".join(lines)


class HandoffBuilder:
    """
    流式构建交接包

    一个实例只服务一次升级事件：首次 build()/build_json() 后即封存，
    之后再调用任何 with_*/add_* 都会抛 HandoffBuilderSealedError。
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or default_settings
        self.result_max_chars = settings.HANDOFF_RESULT_MAX_CHARS
        self.error_log_max_chars = settings.HANDOFF_ERROR_LOG_MAX_CHARS

        self._context_summary: str | None = None
        self._current_task: str | None = None
        self._relevant_files: list[str] = []
        self._related_functions: list[str] = []
        self._attempts: list[AttemptInfo] = []
        self._known_issues: list[str] = []
        self._open_questions: list[str] = []
        self._test_results: list[TestRunResult] = []
        self._request: str | None = None
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def _check_open(self) -> None:
        if self._sealed:
            raise HandoffBuilderSealedError(
                "HandoffBuilder already built; create a new builder for each escalation"
            )

    # ===== 累积 =====

    def with_context_summary(self, summary: ContextSummary | str) -> HandoffBuilder:
        self._check_open()
        if isinstance(summary, ContextSummary):
            summary = render_context_summary(summary)
        self._context_summary = summary
        return self

    def with_current_task(
        self,
        task: str,
        relevant_files: Sequence[str] | None = None,
        related_functions: Sequence[str] | None = None,
    ) -> HandoffBuilder:
        self._check_open()
        self._current_task = task
        self._relevant_files = list(relevant_files or [])
        self._related_functions = list(related_functions or [])
        return self

    def add_attempt(
        self,
        tier: str,
        model: str,
        approach: str,
        result: str,
        success: bool,
    ) -> HandoffBuilder:
        self._check_open()
        self._attempts.append(
            AttemptInfo(
                tier=tier,
                model=model,
                approach=approach,
                result=truncate_text(result, self.result_max_chars),
                success=success,
            )
        )
        return self

    def with_known_issues(self, issues: Iterable[str]) -> HandoffBuilder:
        self._check_open()
        self._known_issues = list(issues)
        return self

    def with_open_questions(self, questions: Iterable[str]) -> HandoffBuilder:
        self._check_open()
        self._open_questions = list(questions)
        return self

    def with_test_results(self, results: Iterable[TestRunResult]) -> HandoffBuilder:
        self._check_open()
        self._test_results = [
            result.model_copy(
                update={"error_log": truncate_text(result.error_log, self.error_log_max_chars)}
            )
            if result.error_log
            else result
            for result in results
        ]
        return self

    def with_request(self, request: str) -> HandoffBuilder:
        self._check_open()
        self._request = request
        return self

    # ===== 输出 =====

    def build_json(self) -> HandoffPackage:
        self._sealed = True
        return HandoffPackage(
            context_summary=self._context_summary,
            current_task=self._current_task,
            relevant_files=list(self._relevant_files),
            related_functions=list(self._related_functions),
            attempts=list(self._attempts),
            known_issues=list(self._known_issues),
            open_questions=list(self._open_questions),
            test_results=list(self._test_results),
            request_to_higher_tier=self._request,
        )

    def build(self) -> str:
        return render_handoff(self.build_json())


def render_handoff(package: HandoffPackage) -> str:
    """按固定分节渲染交接包文本，空分节省略"""
    sections: list[str] = []

    if package.context_summary:
        sections += ["[CONTEXT-SUMMARY]", package.context_summary, ""]

    if package.current_task:
        sections += ["[CURRENT-TASK]", "## Current Task", package.current_task]
        if package.relevant_files:
            sections.append("\n**Relevant Files:**")
            sections += [f"- {f}" for f in package.relevant_files]
        if package.related_functions:
            sections.append("\n**Related Functions/Modules:**")
            sections += [f"- {f}" for f in package.related_functions]
        sections.append("")

    if package.attempts:
        sections.append("[ATTEMPTS-SO-FAR]")
        for idx, attempt in enumerate(package.attempts, start=1):
            sections.append(f"\n### Attempt {idx} ({attempt.tier} - {attempt.model})")
            sections.append(f"**Approach:** {attempt.approach}")
            sections.append(f"**Result:** {attempt.result}")
            sections.append(f"**Success:** {'✓' if attempt.success else '✗'}")
        sections.append("")

    if package.test_results:
        sections.append("[TEST-RESULTS]")
        for test in package.test_results:
            sections.append(f"- {test.test_type}: {test.passed} passed, {test.failed} failed")
            if test.error_log:
                sections.append(f"  Error: {test.error_log}")
        sections.append("")

    if package.known_issues or package.open_questions:
        sections.append("[KNOWN-ISSUES-AND-OPEN-QUESTIONS]")
        if package.known_issues:
            sections.append("**Known Issues:**")
            sections += [f"- {issue}" for issue in package.known_issues]
        if package.open_questions:
            sections.append("**Open Questions:**")
            sections += [f"- {q}" for q in package.open_questions]
        sections.append("")

    if package.request_to_higher_tier:
        sections += ["[WHAT-I-WANT-FROM-HIGHER-TIER]", package.request_to_higher_tier]

    return "\n".join(sections)


def create_handoff_builder(settings: Settings | None = None) -> HandoffBuilder:
    """每次升级事件新建一个构建器"""
    return HandoffBuilder(settings)
