"""Tests for the Ralph iteration controller."""

import pytest

from agentloops.loops.ralph import IterationController, IterationOutcome
from agentloops.loops.state import LoopStatus, RalphState


@pytest.fixture
def controller() -> IterationController:
    return IterationController()


class TestIterationController:
    """Tests for IterationController.decide."""

    def test_completion_ends_loop(self, controller: IterationController) -> None:
        state = RalphState(original_prompt="Add dark mode")

        decision = controller.decide(state, completed=True)

        assert decision.outcome == IterationOutcome.COMPLETE
        assert decision.state.status == LoopStatus.COMPLETE
        assert decision.state.active is False
        assert decision.state.current_iteration == 0

    def test_no_signal_continues(self, controller: IterationController) -> None:
        state = RalphState(original_prompt="Add dark mode")

        decision = controller.decide(state, completed=False)

        assert decision.outcome == IterationOutcome.CONTINUE
        assert decision.state.current_iteration == 1
        assert decision.state.active is True
        assert decision.clear_context is True
        assert decision.notice is None

    def test_context_kept_when_configured(self, controller: IterationController) -> None:
        state = RalphState(original_prompt="x", clear_context_between_iterations=False)
        assert controller.decide(state, completed=False).clear_context is False

    def test_cap_reached(self, controller: IterationController) -> None:
        state = RalphState(original_prompt="x", max_iterations=5, current_iteration=4)

        decision = controller.decide(state, completed=False)

        assert decision.outcome == IterationOutcome.INCOMPLETE
        assert decision.state.status == LoopStatus.INCOMPLETE
        assert decision.state.current_iteration == 5
        assert decision.state.stop_reason == "Max iterations (5) reached"

    def test_single_iteration_cap(self, controller: IterationController) -> None:
        state = RalphState(original_prompt="x", max_iterations=1)
        assert controller.decide(state, completed=False).outcome == IterationOutcome.INCOMPLETE

    def test_runs_exactly_max_iterations(self, controller: IterationController) -> None:
        state = RalphState(original_prompt="x", max_iterations=5)
        turns = 0
        while True:
            turns += 1
            decision = controller.decide(state, completed=False)
            state = decision.state
            if decision.outcome != IterationOutcome.CONTINUE:
                break
        assert turns == 5
        assert decision.outcome == IterationOutcome.INCOMPLETE

    def test_missing_evidence_continues_with_notice(
        self, controller: IterationController
    ) -> None:
        state = RalphState(original_prompt="x", require_evidence=True)

        decision = controller.decide(state, completed=True, evidence_ok=False)

        assert decision.outcome == IterationOutcome.CONTINUE
        assert decision.state.current_iteration == 1
        assert decision.notice is not None
        assert "evidence" in decision.notice

    def test_evidence_present_completes(self, controller: IterationController) -> None:
        state = RalphState(original_prompt="x", require_evidence=True)
        decision = controller.decide(state, completed=True, evidence_ok=True)
        assert decision.outcome == IterationOutcome.COMPLETE

    def test_evidence_ignored_when_not_required(self, controller: IterationController) -> None:
        state = RalphState(original_prompt="x")
        decision = controller.decide(state, completed=True, evidence_ok=False)
        assert decision.outcome == IterationOutcome.COMPLETE

    def test_missing_evidence_on_last_iteration_is_incomplete(
        self, controller: IterationController
    ) -> None:
        state = RalphState(
            original_prompt="x", max_iterations=2, current_iteration=1, require_evidence=True
        )
        decision = controller.decide(state, completed=True, evidence_ok=False)
        assert decision.outcome == IterationOutcome.INCOMPLETE

    def test_input_not_modified(self, controller: IterationController) -> None:
        state = RalphState(original_prompt="x")
        controller.decide(state, completed=False)
        assert state.current_iteration == 0
        assert state.active is True
