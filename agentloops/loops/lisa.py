"""Lisa phase state machine.

Drives the plan / review / execute / review / validate / review workflow.
Transitions are computed on copies: ``apply`` returns a new ``LisaState``
and leaves its input untouched, so the caller can persist the result before
adopting it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum

from agentloops.loops.phases import NEXT_PHASE, REJECT_TARGETS, LisaPhase
from agentloops.loops.signals import Signal, SignalKind
from agentloops.loops.state import LisaState, LoopStatus, PhaseVisit

logger = logging.getLogger(__name__)


class InvalidTransition(ValueError):
    """A signal that the current phase cannot act on, e.g. an out-of-table reject."""


class TransitionKind(Enum):
    ADVANCE = "advance"
    REJECT = "reject"
    REVISIT = "revisit"
    FINISH = "finish"


@dataclass(frozen=True)
class PhaseTransition:
    """Outcome of feeding one turn's signal to the machine."""

    kind: TransitionKind
    source: LisaPhase
    state: LisaState

    @property
    def destination(self) -> LisaPhase:
        return self.state.current_phase


def enter_phase(state: LisaState, phase: LisaPhase, now: datetime | None = None) -> LisaState:
    """Return a copy of ``state`` that has entered ``phase`` once more.

    Increments the phase's visit counter and appends the matching history
    entry, keeping counters and history in step.
    """
    now = now or datetime.now(UTC)
    counts = dict(state.phase_visit_counts)
    counts[phase] += 1
    visit = PhaseVisit(phase=phase, visit_index=counts[phase], timestamp=now)
    return replace(
        state,
        current_phase=phase,
        phase_visit_counts=counts,
        phase_history=(*state.phase_history, visit),
        transition_count=state.transition_count + 1,
    )


class PhaseStateMachine:
    """Applies signals to a LisaState according to the phase tables."""

    def apply(
        self, state: LisaState, signal: Signal | None, now: datetime | None = None
    ) -> PhaseTransition:
        """Compute the transition for ``signal`` in the current phase.

        Args:
            state: Current loop state (not modified)
            signal: Detected signal, or None when the turn had none
            now: Timestamp for the new history entry

        Returns:
            PhaseTransition carrying the new state

        Raises:
            InvalidTransition: If the signal does not fit the current phase
        """
        phase = state.current_phase

        if signal is None:
            return self.revisit(state, now)

        if signal.kind == SignalKind.REVIEW_REJECTED:
            if not phase.is_review:
                raise InvalidTransition(f"{phase.value} is not a review phase and cannot reject")
            if signal.target not in REJECT_TARGETS[phase]:
                allowed = ", ".join(p.value for p in REJECT_TARGETS[phase])
                raise InvalidTransition(
                    f"{phase.value} cannot reject to {signal.target.value if signal.target else None}"
                    f" (allowed: {allowed})"
                )
            return PhaseTransition(
                TransitionKind.REJECT, phase, enter_phase(state, signal.target, now)
            )

        expected = (
            SignalKind.REVIEW_APPROVED if phase.is_review else SignalKind.PHASE_COMPLETE
        )
        if signal.kind != expected:
            raise InvalidTransition(f"{signal.kind.value} is not valid during {phase.value}")

        next_phase = NEXT_PHASE[phase]
        if next_phase is None:
            finished = replace(
                state,
                active=False,
                status=LoopStatus.COMPLETE,
                stop_reason="Final review approved",
            )
            return PhaseTransition(TransitionKind.FINISH, phase, finished)

        return PhaseTransition(
            TransitionKind.ADVANCE, phase, enter_phase(state, next_phase, now)
        )

    def revisit(self, state: LisaState, now: datetime | None = None) -> PhaseTransition:
        """Re-enter the current phase after a turn with no actionable signal."""
        phase = state.current_phase
        logger.debug(f"Revisiting {phase.value} (visit {state.visits() + 1})")
        return PhaseTransition(TransitionKind.REVISIT, phase, enter_phase(state, phase, now))
