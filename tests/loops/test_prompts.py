"""Tests for prompt composition."""

import pytest

from agentloops.loops.phases import LisaPhase
from agentloops.loops.prompts import (
    EXCERPT_LIMIT,
    NO_COMMIT_WARNING,
    TRUNCATION_MARKER,
    PromptComposer,
    ralph_composer,
    truncate_excerpt,
)
from agentloops.loops.signals import LISA_PROTOCOL, RALPH_PROTOCOL


@pytest.fixture
def composer() -> PromptComposer:
    return PromptComposer(LISA_PROTOCOL)


class TestTruncateExcerpt:
    """Tests for truncate_excerpt."""

    def test_short_text_unchanged(self) -> None:
        assert truncate_excerpt("hello") == "hello"

    def test_exact_limit_unchanged(self) -> None:
        text = "a" * EXCERPT_LIMIT
        assert truncate_excerpt(text) == text

    def test_long_text_cut_with_marker(self) -> None:
        text = "a" * (EXCERPT_LIMIT + 1)
        result = truncate_excerpt(text)
        assert result == "a" * EXCERPT_LIMIT + TRUNCATION_MARKER


class TestComposeLisa:
    """Tests for Lisa phase prompts."""

    def test_section_order(self, composer: PromptComposer) -> None:
        prompt = composer.compose_lisa(
            LisaPhase.EXECUTE,
            2,
            "Fix the login bug",
            "previous output",
            reviewer_feedback="Handle empty passwords",
        )
        positions = [
            prompt.index("Lisa Simpson Loop - CODE"),
            prompt.index("## Reviewer Feedback (ADDRESS THIS):"),
            prompt.index("## Original Task:"),
            prompt.index("## Previous Response (context):"),
            prompt.index("CODE PHASE (Visit #2)"),
        ]
        assert positions == sorted(positions)
        assert "Handle empty passwords" in prompt
        assert "Fix the login bug" in prompt

    def test_first_visit_has_no_visit_label(self, composer: PromptComposer) -> None:
        prompt = composer.compose_lisa(LisaPhase.PLAN, 1, "task", "")
        assert "Visit #" not in prompt
        assert "No previous response." in prompt
        assert "Reviewer Feedback" not in prompt

    def test_work_phase_asks_for_completion_token(self, composer: PromptComposer) -> None:
        prompt = composer.compose_lisa(LisaPhase.PLAN, 1, "task", "")
        assert prompt.rstrip().endswith(LISA_PROTOCOL.phase_complete)
        assert NO_COMMIT_WARNING in prompt

    def test_review_phase_lists_allowed_rejects(self, composer: PromptComposer) -> None:
        prompt = composer.compose_lisa(LisaPhase.CODE_REVIEW, 1, "task", "code done")
        assert LISA_PROTOCOL.review_approved in prompt
        assert "<lisa-review>REJECT:execute</lisa-review>" in prompt
        assert "<lisa-review>REJECT:plan</lisa-review>" in prompt
        assert "REJECT:validate" not in prompt

    def test_plan_review_only_rejects_to_plan(self, composer: PromptComposer) -> None:
        prompt = composer.compose_lisa(LisaPhase.PLAN_REVIEW, 1, "task", "plan done")
        assert "REJECT:plan</lisa-review>" in prompt
        assert "REJECT:execute" not in prompt

    def test_evidence_dir_substituted(self, composer: PromptComposer) -> None:
        prompt = composer.compose_lisa(
            LisaPhase.VALIDATE, 1, "task", "", evidence_dir="/work/evidence"
        )
        assert "/work/evidence/screenshots/" in prompt
        assert "{evidence}" not in prompt

    def test_previous_response_truncated(self, composer: PromptComposer) -> None:
        long_reply = "x" * 5000
        prompt = composer.compose_lisa(LisaPhase.PLAN_REVIEW, 1, "task", long_reply)
        assert "x" * EXCERPT_LIMIT + TRUNCATION_MARKER in prompt
        assert "x" * (EXCERPT_LIMIT + 1) not in prompt

    def test_custom_excerpt_limit(self) -> None:
        composer = PromptComposer(LISA_PROTOCOL, excerpt_limit=10)
        prompt = composer.compose_lisa(LisaPhase.PLAN_REVIEW, 1, "task", "y" * 50)
        assert "y" * 10 + TRUNCATION_MARKER in prompt

    def test_deterministic(self, composer: PromptComposer) -> None:
        args = (LisaPhase.FINAL_REVIEW, 3, "task", "last")
        assert composer.compose_lisa(*args) == composer.compose_lisa(*args)


class TestComposeRalph:
    """Tests for Ralph iteration prompts."""

    def test_first_iteration(self) -> None:
        prompt = ralph_composer().compose_ralph(1, 5, "Add dark mode")
        assert "Starting autonomous execution (iteration 1 of 5)" in prompt
        assert "Add dark mode" in prompt
        assert RALPH_PROTOCOL.phase_complete in prompt
        assert "Previous Response" not in prompt

    def test_later_iteration_includes_previous_response(self) -> None:
        prompt = ralph_composer().compose_ralph(
            3, 5, "Add dark mode", "did the toggle", progress_file="/w/progress.md"
        )
        assert "Continuing autonomous execution (iteration 3 of 5)" in prompt
        assert "did the toggle" in prompt
        assert "`/w/progress.md`" in prompt

    def test_evidence_and_notice(self) -> None:
        prompt = ralph_composer().compose_ralph(
            2,
            5,
            "task",
            require_evidence=True,
            evidence_dir="proof",
            notice="Evidence missing",
        )
        assert "`proof/screenshots/`" in prompt
        assert "Evidence missing" in prompt
        assert prompt.index("Evidence missing") < prompt.index("## Original Task:")

    def test_no_evidence_section_by_default(self) -> None:
        prompt = ralph_composer().compose_ralph(1, 5, "task")
        assert "Evidence Required" not in prompt
