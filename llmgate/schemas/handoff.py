from __future__ import annotations

from pydantic import Field

from llmgate.schemas.base import FrozenSchema


class AttemptInfo(FrozenSchema):
    tier: str
    model: str
    approach: str
    result: str  # 已截断
    success: bool


class TestRunResult(FrozenSchema):
    """一次测试运行的结果"""

    test_type: str
    passed: int = 0
    failed: int = 0
    error_log: str | None = None


class HandoffPackage(FrozenSchema):
    """
    升级交接包（结构化形式）

    与 HandoffBuilder.build() 的文本出自同一份累积状态。
    """
    context_summary: str | None = None
    current_task: str | None = None
    relevant_files: list[str] = Field(default_factory=list)
    related_functions: list[str] = Field(default_factory=list)
    attempts: list[AttemptInfo] = Field(default_factory=list)
    known_issues: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)
    test_results: list[TestRunResult] = Field(default_factory=list)
    request_to_higher_tier: str | None = None
