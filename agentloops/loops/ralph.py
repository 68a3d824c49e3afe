"""Ralph iteration controller.

The Ralph loop feeds the same task to the agent until it declares
completion or the iteration cap is reached. Progress lives in files, not
in the agent's memory, so the conversation can be cleared between turns.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from agentloops.loops.state import LoopStatus, RalphState


class IterationOutcome(Enum):
    CONTINUE = "continue"
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class IterationDecision:
    """What to do after one Ralph turn."""

    outcome: IterationOutcome
    state: RalphState
    clear_context: bool = False
    notice: str | None = None


class IterationController:
    """Bounded retry loop. Pure: returns new state, never mutates its input."""

    def decide(
        self, state: RalphState, completed: bool, evidence_ok: bool = True
    ) -> IterationDecision:
        """Decide the next step for a finished turn.

        Args:
            state: Current loop state (not modified)
            completed: Whether the completion signal appeared in the turn
            evidence_ok: Result of the evidence gate; only consulted when the
                state requires evidence and the turn claimed completion

        Returns:
            IterationDecision with the updated state
        """
        evidence_missing = completed and state.require_evidence and not evidence_ok
        if completed and not evidence_missing:
            done = replace(
                state,
                active=False,
                status=LoopStatus.COMPLETE,
                stop_reason="Completion signal detected",
            )
            return IterationDecision(IterationOutcome.COMPLETE, done)

        iteration = state.current_iteration + 1
        if iteration >= state.max_iterations:
            exhausted = replace(
                state,
                current_iteration=state.max_iterations,
                active=False,
                status=LoopStatus.INCOMPLETE,
                stop_reason=f"Max iterations ({state.max_iterations}) reached",
            )
            return IterationDecision(IterationOutcome.INCOMPLETE, exhausted)

        notice = None
        if evidence_missing:
            notice = (
                "You reported completion, but the required evidence was not found. "
                "Capture the evidence before signalling completion again."
            )
        return IterationDecision(
            IterationOutcome.CONTINUE,
            replace(state, current_iteration=iteration),
            clear_context=state.clear_context_between_iterations,
            notice=notice,
        )
