import pytest
from pydantic import ValidationError

from llmgate.schemas.context import ContextSummary
from llmgate.schemas.handoff import TestRunResult
from llmgate.services.handoff.builder import (
    HandoffBuilderSealedError,
    create_handoff_builder,
    truncate_text,
)


def test_attempt_result_is_truncated_in_text_and_json():
    builder = create_handoff_builder().add_attempt(
        "L1", "gpt-4o-mini", "patch the parser", "a" * 1000, False
    )

    package = builder.build_json()
    text = builder.build()

    assert package.attempts[0].result == "a" * 500 + "..."
    assert "a" * 500 + "..." in text
    assert "a" * 501 not in text


def test_short_text_is_not_suffixed():
    assert truncate_text("ok", 500) == "ok"
    assert truncate_text("x" * 500, 500) == "x" * 500


def test_error_log_is_truncated_to_200():
    builder = create_handoff_builder().with_test_results(
        [TestRunResult(test_type="unit", passed=3, failed=1, error_log="e" * 450)]
    )

    package = builder.build_json()

    assert package.test_results[0].error_log == "e" * 200 + "..."


def test_sections_render_in_order_and_empty_ones_are_omitted():
    summary = ContextSummary(
        conversation_id="c1",
        stack=["python", "fastapi"],
        architecture="hexagonal",
        decisions=["use postgres"],
    )
    text = (
        create_handoff_builder()
        .with_context_summary(summary)
        .with_current_task("fix login", ["auth.py"], ["verify_token"])
        .add_attempt("L0", "llama", "first try", "failed", False)
        .add_attempt("L1", "gpt-4o-mini", "second try", "almost", False)
        .with_known_issues(["flaky test"])
        .with_open_questions(["which token format?"])
        .with_request("provide a working fix")
        .build()
    )

    order = [
        "[CONTEXT-SUMMARY]",
        "[CURRENT-TASK]",
        "[ATTEMPTS-SO-FAR]",
        "[KNOWN-ISSUES-AND-OPEN-QUESTIONS]",
        "[WHAT-I-WANT-FROM-HIGHER-TIER]",
    ]
    positions = [text.index(marker) for marker in order]
    assert positions == sorted(positions)
    assert "[TEST-RESULTS]" not in text
    assert "**Stack:** python, fastapi" in text
    assert "- auth.py" in text and "- verify_token" in text
    assert text.index("### Attempt 1 (L0 - llama)") < text.index("### Attempt 2 (L1 - gpt-4o-mini)")


def test_json_matches_accumulated_state():
    package = (
        create_handoff_builder()
        .with_current_task("task", relevant_files=["a.py"])
        .add_attempt("L0", "m", "approach", "result", True)
        .with_request("help")
        .build_json()
    )

    assert package.current_task == "task"
    assert package.relevant_files == ["a.py"]
    assert package.attempts[0].success is True
    assert package.request_to_higher_tier == "help"
    assert package.context_summary is None


def test_builder_is_sealed_after_build():
    builder = create_handoff_builder().with_request("help")
    builder.build()

    assert builder.sealed is True
    with pytest.raises(HandoffBuilderSealedError):
        builder.add_attempt("L0", "m", "a", "r", False)


def test_factory_returns_fresh_builders():
    first = create_handoff_builder().add_attempt("L0", "m", "a", "r", False)
    second = create_handoff_builder()

    assert first is not second
    assert second.build_json().attempts == []


def test_test_run_result_is_exported_and_frozen():
    from llmgate import schemas

    result = schemas.TestRunResult(test_type="integration", passed=1)

    assert schemas.HandoffPackage(test_results=[result]).test_results == [result]
    with pytest.raises(ValidationError):
        result.failed = 2
