"""Loop driver - sends prompts, awaits turns, applies transitions.

One driver runs per session. Each cycle:
1. IDLE: compose the next prompt and hand it to the transport
2. AWAITING_TURN: suspend until the session's channel delivers the turn outcome
3. DECIDING: detect the signal, compute the next state, persist it, log progress
4. Back to IDLE, or HALTED with a terminal status

State is persisted before it is adopted in memory: if the write fails the
loop halts with ``error`` and the in-memory state stays at the last durable
version. Abort requests are honoured at the next decision boundary, so a turn
already in flight always finishes first. Cancelling the driver task instead
stops at once: the halt is recorded as ``aborted`` and the unfinished turn is
dropped by the transport.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path

from rich.console import Console
from rich.panel import Panel

from agentloops.loops.lisa import InvalidTransition, PhaseStateMachine, TransitionKind
from agentloops.loops.progress import ProgressEntry, ProgressLog
from agentloops.loops.prompts import PromptComposer, ralph_composer, truncate_excerpt
from agentloops.loops.ralph import IterationController, IterationOutcome
from agentloops.loops.signals import (
    LISA_PROTOCOL,
    RALPH_PROTOCOL,
    Expect,
    SignalDetector,
    SignalKind,
)
from agentloops.loops.state import (
    LisaState,
    LoopState,
    LoopStatus,
    PersistenceError,
    RalphState,
    StateManager,
)
from agentloops.transport.base import SessionTransport, TransportError, TurnFailed

console = Console()
logger = logging.getLogger(__name__)

EvidenceChecker = Callable[[Path], bool]


class DriverPhase(Enum):
    IDLE = "idle"
    AWAITING_TURN = "awaiting-turn"
    DECIDING = "deciding"
    HALTED = "halted"


@dataclass
class LoopOutcome:
    """Result of a loop run."""

    status: LoopStatus
    reason: str
    turns: int
    state: LoopState
    started_at: datetime
    ended_at: datetime = field(default_factory=datetime.now)

    @property
    def completed(self) -> bool:
        return self.status == LoopStatus.COMPLETE


@dataclass
class Step:
    """Decision for one turn: the next state and, if halting, why."""

    state: LoopState
    entry: ProgressEntry
    halt: LoopStatus | None = None
    reason: str = ""
    clear_context: bool = False


class LoopDriver(ABC):
    """Common driver machinery. Subclasses supply prompts and decisions."""

    def __init__(
        self,
        session_id: str,
        state: LoopState,
        transport: SessionTransport,
        *,
        state_manager: StateManager,
        progress_log: ProgressLog | None = None,
    ):
        """Initialize the driver.

        Args:
            session_id: Session the loop runs in
            state: Initial (or resumed) loop state
            transport: Session transport used to send prompts
            state_manager: Durable store for the state
            progress_log: Optional human-readable progress log
        """
        self.session_id = session_id
        self.state = state
        self.transport = transport
        self.state_manager = state_manager
        self.progress_log = progress_log
        self.phase = DriverPhase.IDLE
        self.turns = 0
        self.last_response = ""
        self._abort_requested = False

    def request_abort(self) -> None:
        """Ask the loop to stop at the next decision boundary."""
        if not self._abort_requested:
            logger.info(f"Session {self.session_id}: abort requested")
        self._abort_requested = True

    @abstractmethod
    def compose_prompt(self) -> str:
        """Build the prompt for the next turn."""

    @abstractmethod
    async def decide(self, text: str) -> Step:
        """Turn one agent reply into the next step."""

    @abstractmethod
    def describe(self) -> str:
        """Short position label, e.g. "Iteration 2/5" or "Execute (visit 1)"."""

    async def run(self) -> LoopOutcome:
        """Run until a terminal status is reached.

        Returns:
            LoopOutcome describing how the loop ended
        """
        started_at = datetime.now()
        self.transport.claim(self.session_id)
        try:
            return await self._run(started_at)
        except asyncio.CancelledError:
            # Cancelled mid-turn (e.g. Ctrl-C): record the abort, then propagate.
            if self.phase != DriverPhase.HALTED:
                self._halt(LoopStatus.ABORTED, "Cancelled while running", started_at)
            raise
        finally:
            self.transport.release(self.session_id)

    async def _run(self, started_at: datetime) -> LoopOutcome:
        try:
            self.state_manager.save_state(self.state)
        except PersistenceError as e:
            return self._finish(LoopStatus.ERROR, f"Persistence failed: {e}", started_at)

        self._print_start_banner()
        channel = self.transport.channel(self.session_id)

        while True:
            if self._abort_requested:
                return self._halt(LoopStatus.ABORTED, "Aborted by user", started_at)

            prompt = self.compose_prompt()
            console.print(f"[bold cyan]━━━ {self.describe()} ━━━[/]")
            self.phase = DriverPhase.AWAITING_TURN
            try:
                await self.transport.send(self.session_id, prompt)
            except TransportError as e:
                logger.exception(f"Session {self.session_id}: send failed")
                return self._halt(LoopStatus.ERROR, f"Transport error: {e}", started_at)
            event = await channel.get()

            self.phase = DriverPhase.DECIDING
            self.turns += 1
            if isinstance(event, TurnFailed):
                console.print(f"[red]✗[/] Turn failed: {event.error}")
                return self._halt(LoopStatus.ERROR, f"Transport error: {event.error}", started_at)

            if self._abort_requested:
                return self._halt(LoopStatus.ABORTED, "Aborted by user", started_at)

            try:
                step = await self.decide(event.text)
            except Exception as e:
                logger.exception(f"Session {self.session_id}: decision failed")
                return self._halt(LoopStatus.ERROR, f"Unexpected error: {e}", started_at)

            try:
                self.state_manager.save_state(step.state)
            except PersistenceError as e:
                console.print(f"[red]✗[/] Could not record progress: {e}")
                return self._finish(LoopStatus.ERROR, f"Persistence failed: {e}", started_at)

            self.state = step.state
            self.last_response = event.text
            self._record_progress(step.entry)

            if step.halt is not None:
                return self._finish(step.halt, step.reason, started_at)

            if step.clear_context:
                try:
                    await self.transport.clear_context(self.session_id)
                except TransportError as e:
                    logger.exception(f"Session {self.session_id}: clearing context failed")
                    return self._halt(LoopStatus.ERROR, f"Transport error: {e}", started_at)

            self.phase = DriverPhase.IDLE

    def _halt(self, status: LoopStatus, reason: str, started_at: datetime) -> LoopOutcome:
        """Deactivate the loop with ``status``, recording it on disk when possible."""
        halted = replace(self.state, active=False, status=status, stop_reason=reason)
        try:
            self.state_manager.save_state(halted)
        except PersistenceError as e:
            logger.error(f"Session {self.session_id}: could not record {status.value} halt: {e}")
        else:
            self.state = halted
            self._record_progress(ProgressEntry(title=f"Loop {status.value}", details=[reason]))
        return self._finish(status, reason, started_at)

    def _finish(self, status: LoopStatus, reason: str, started_at: datetime) -> LoopOutcome:
        self.phase = DriverPhase.HALTED
        outcome = LoopOutcome(
            status=status,
            reason=reason,
            turns=self.turns,
            state=self.state,
            started_at=started_at,
        )
        logger.info(f"Session {self.session_id}: halted ({status.value}) - {reason}")
        self._print_summary(outcome)
        return outcome

    def _record_progress(self, entry: ProgressEntry) -> None:
        if self.progress_log is None:
            return
        try:
            self.progress_log.append(entry)
        except OSError as e:
            logger.warning(f"Failed to append to progress log {self.progress_log.progress_path}: {e}")

    def _print_start_banner(self) -> None:
        console.print(
            Panel(
                f"[bold blue]{self.state.mode.value.title()} Loop[/]\n"
                f"Session: {self.session_id}\n"
                f"Position: {self.describe()}\n"
                f"State file: {self.state_manager.state_file}",
                expand=False,
            )
        )
        console.print()

    def _print_summary(self, outcome: LoopOutcome) -> None:
        colors = {
            LoopStatus.COMPLETE: "green",
            LoopStatus.INCOMPLETE: "yellow",
            LoopStatus.ABORTED: "yellow",
            LoopStatus.ERROR: "red",
        }
        color = colors.get(outcome.status, "white")
        duration = outcome.ended_at - outcome.started_at
        console.print()
        console.print(
            Panel(
                f"[bold]{self.state.mode.value.title()} Loop Halted[/]\n\n"
                f"Status: [{color}]{outcome.status.value}[/]\n"
                f"Turns: {outcome.turns}\n"
                f"Duration: {duration}\n"
                f"Reason: {outcome.reason}",
                expand=False,
            )
        )


class RalphDriver(LoopDriver):
    """Drives a single-phase Ralph loop."""

    state: RalphState

    def __init__(
        self,
        session_id: str,
        state: RalphState,
        transport: SessionTransport,
        *,
        state_manager: StateManager,
        progress_log: ProgressLog | None = None,
        evidence_checker: EvidenceChecker | None = None,
        evidence_dir: str = "evidence",
        composer: PromptComposer | None = None,
        detector: SignalDetector | None = None,
    ):
        super().__init__(
            session_id, state, transport, state_manager=state_manager, progress_log=progress_log
        )
        self.evidence_checker = evidence_checker
        self.evidence_dir = evidence_dir
        self.composer = composer or ralph_composer()
        self.detector = detector or SignalDetector(RALPH_PROTOCOL)
        self.controller = IterationController()
        self._notice: str | None = None

    def describe(self) -> str:
        return f"Iteration {self.state.current_iteration + 1}/{self.state.max_iterations}"

    def compose_prompt(self) -> str:
        return self.composer.compose_ralph(
            self.state.current_iteration + 1,
            self.state.max_iterations,
            self.state.original_prompt,
            self.last_response,
            require_evidence=self.state.require_evidence,
            evidence_dir=self.evidence_dir,
            progress_file=self.state.progress_file_path,
            notice=self._notice,
        )

    async def decide(self, text: str) -> Step:
        completed = self.detector.detect(text, Expect.PHASE_COMPLETE) is not None
        evidence_ok = True
        if completed and self.state.require_evidence:
            evidence_ok = await self._check_evidence()

        position = self.describe()
        decision = self.controller.decide(self.state, completed, evidence_ok)
        self._notice = decision.notice

        if decision.outcome == IterationOutcome.COMPLETE:
            console.print("[green]✓[/] Completion signal detected")
        elif decision.notice:
            console.print("[yellow]![/] Completion claimed without evidence")
        else:
            console.print("[dim]No completion signal[/]")

        entry = ProgressEntry(
            title=position,
            details=[f"Outcome: {decision.outcome.value}"]
            + ([decision.notice] if decision.notice else []),
            excerpt=text,
        )
        if decision.outcome == IterationOutcome.CONTINUE:
            return Step(decision.state, entry, clear_context=decision.clear_context)
        return Step(
            decision.state,
            entry,
            halt=decision.state.status,
            reason=decision.state.stop_reason or decision.outcome.value,
        )

    async def _check_evidence(self) -> bool:
        if self.evidence_checker is None:
            logger.warning("Evidence required but no evidence checker configured")
            return False
        working_dir = Path(self.state.working_dir) if self.state.working_dir else Path.cwd()
        return await asyncio.to_thread(self.evidence_checker, working_dir)


class LisaDriver(LoopDriver):
    """Drives the six-phase Lisa workflow."""

    state: LisaState

    def __init__(
        self,
        session_id: str,
        state: LisaState,
        transport: SessionTransport,
        *,
        state_manager: StateManager,
        progress_log: ProgressLog | None = None,
        evidence_dir: str = "evidence",
        composer: PromptComposer | None = None,
        detector: SignalDetector | None = None,
    ):
        super().__init__(
            session_id, state, transport, state_manager=state_manager, progress_log=progress_log
        )
        self.evidence_dir = state.evidence_folder_path or evidence_dir
        self.composer = composer or PromptComposer(LISA_PROTOCOL)
        self.detector = detector or SignalDetector(LISA_PROTOCOL)
        self.machine = PhaseStateMachine()
        self._feedback: str | None = None

    def describe(self) -> str:
        phase = self.state.current_phase
        return f"{phase.label} (visit {self.state.visits(phase)})"

    def compose_prompt(self) -> str:
        return self.composer.compose_lisa(
            self.state.current_phase,
            self.state.visits(),
            self.state.original_prompt,
            self.last_response,
            reviewer_feedback=self._feedback,
            evidence_dir=self.evidence_dir,
        )

    async def decide(self, text: str) -> Step:
        state = self.state
        phase = state.current_phase
        signal = self.detector.detect(text, Expect.for_phase(phase))

        try:
            transition = self.machine.apply(state, signal)
        except InvalidTransition as e:
            logger.warning(f"Session {self.session_id}: protocol violation in {phase.value}: {e}")
            transition = self.machine.revisit(state)

        signal_label = signal.kind.value if signal else "none"
        if signal and signal.kind == SignalKind.REVIEW_REJECTED and signal.target:
            signal_label += f" -> {signal.target.value}"

        if transition.kind == TransitionKind.FINISH:
            console.print("[green]✓[/] Final review approved")
            return Step(
                transition.state,
                ProgressEntry(title=f"{phase.label} approved", details=["Loop complete"], excerpt=text),
                halt=LoopStatus.COMPLETE,
                reason="Final review approved",
            )

        limit = state.max_transitions
        if limit and transition.state.transition_count > limit:
            reason = f"Max phase transitions ({limit}) reached"
            console.print(f"[yellow]Stopping:[/] {reason}")
            halted = replace(state, active=False, status=LoopStatus.INCOMPLETE, stop_reason=reason)
            return Step(
                halted,
                ProgressEntry(title=f"{phase.label} stopped", details=[reason], excerpt=text),
                halt=LoopStatus.INCOMPLETE,
                reason=reason,
            )

        destination = transition.destination
        self._feedback = (
            truncate_excerpt(text) if transition.kind == TransitionKind.REJECT else None
        )
        arrow = {
            TransitionKind.ADVANCE: "[green]→[/]",
            TransitionKind.REJECT: "[red]↩[/]",
            TransitionKind.REVISIT: "[yellow]↻[/]",
        }[transition.kind]
        console.print(f"{arrow} {phase.label} → {destination.label} ({transition.kind.value})")

        entry = ProgressEntry(
            title=f"{phase.label} → {destination.label}",
            details=[
                f"Transition: {transition.kind.value}",
                f"Signal: {signal_label}",
                f"Visit: {transition.state.visits(destination)}",
            ],
            excerpt=text,
        )
        return Step(transition.state, entry)
