"""Loop state records and their durable JSON store.

Both loop variants keep one state object per session. The object is written
to disk after every transition so a crashed or restarted app can resume, and
other tooling may read the file to show progress.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from agentloops.loops.phases import LisaPhase

logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """Raised when loop state cannot be durably written or read."""


class LoopMode(Enum):
    """Which autonomous loop, if any, drives a session."""

    RALPH = "ralph"
    LISA = "lisa"
    OFF = "off"

    @classmethod
    def from_string(cls, value: str | None) -> LoopMode:
        """Convert string to LoopMode, defaulting to OFF."""
        mapping = {mode.value: mode for mode in cls}
        return mapping.get(value or "", cls.OFF)


class LoopStatus(Enum):
    """Lifecycle status of a loop. Everything except RUNNING is terminal."""

    RUNNING = "running"
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    ERROR = "error"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self is not LoopStatus.RUNNING


def _now() -> datetime:
    return datetime.now(UTC)


def _dump_time(value: datetime) -> str:
    return value.isoformat()


def _load_time(value: str | None) -> datetime:
    return datetime.fromisoformat(value) if value else _now()


@dataclass
class RalphState:
    """State for a single-phase Ralph loop."""

    original_prompt: str
    max_iterations: int = 5
    current_iteration: int = 0
    active: bool = True
    require_evidence: bool = False
    clear_context_between_iterations: bool = True
    started_at: datetime = field(default_factory=_now)
    progress_file_path: str | None = None
    state_file_path: str | None = None
    working_dir: str | None = None
    status: LoopStatus = LoopStatus.RUNNING
    stop_reason: str | None = None

    mode = LoopMode.RALPH

    def __post_init__(self) -> None:
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")
        if self.current_iteration < 0:
            raise ValueError(f"current_iteration must be >= 0, got {self.current_iteration}")
        if self.current_iteration > self.max_iterations:
            raise ValueError(
                f"current_iteration {self.current_iteration} exceeds max_iterations {self.max_iterations}"
            )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "mode": self.mode.value,
            "original_prompt": self.original_prompt,
            "max_iterations": self.max_iterations,
            "current_iteration": self.current_iteration,
            "active": self.active,
            "require_evidence": self.require_evidence,
            "clear_context_between_iterations": self.clear_context_between_iterations,
            "started_at": _dump_time(self.started_at),
            "progress_file_path": self.progress_file_path,
            "state_file_path": self.state_file_path,
            "working_dir": self.working_dir,
            "status": self.status.value,
            "stop_reason": self.stop_reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RalphState:
        """Create from dictionary."""
        return cls(
            original_prompt=data["original_prompt"],
            max_iterations=data.get("max_iterations", 5),
            current_iteration=data.get("current_iteration", 0),
            active=data.get("active", False),
            require_evidence=data.get("require_evidence", False),
            clear_context_between_iterations=data.get("clear_context_between_iterations", True),
            started_at=_load_time(data.get("started_at")),
            progress_file_path=data.get("progress_file_path"),
            state_file_path=data.get("state_file_path"),
            working_dir=data.get("working_dir"),
            status=LoopStatus(data.get("status", LoopStatus.RUNNING.value)),
            stop_reason=data.get("stop_reason"),
        )


@dataclass(frozen=True)
class PhaseVisit:
    """One entry in the Lisa phase history. Never modified once recorded."""

    phase: LisaPhase
    visit_index: int
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "visit_index": self.visit_index,
            "timestamp": _dump_time(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict) -> PhaseVisit:
        return cls(
            phase=LisaPhase(data["phase"]),
            visit_index=data["visit_index"],
            timestamp=_load_time(data.get("timestamp")),
        )


def empty_visit_counts() -> dict[LisaPhase, int]:
    """Visit counters with every phase present."""
    return {phase: 0 for phase in LisaPhase}


@dataclass
class LisaState:
    """State for the six-phase Lisa workflow.

    ``phase_visit_counts`` always mirrors ``phase_history``: the count for a
    phase equals the number of history entries for it.
    """

    original_prompt: str
    current_phase: LisaPhase = LisaPhase.PLAN
    phase_visit_counts: dict[LisaPhase, int] = field(default_factory=empty_visit_counts)
    active: bool = True
    evidence_folder_path: str | None = None
    phase_history: tuple[PhaseVisit, ...] = ()
    started_at: datetime = field(default_factory=_now)
    transition_count: int = 0
    max_transitions: int = 50
    progress_file_path: str | None = None
    state_file_path: str | None = None
    working_dir: str | None = None
    status: LoopStatus = LoopStatus.RUNNING
    stop_reason: str | None = None

    mode = LoopMode.LISA

    def __post_init__(self) -> None:
        counts = empty_visit_counts()
        counts.update(self.phase_visit_counts)
        self.phase_visit_counts = counts
        self.phase_history = tuple(self.phase_history)

        history = Counter(visit.phase for visit in self.phase_history)
        mismatched = [phase.value for phase in LisaPhase if counts[phase] != history[phase]]
        if mismatched:
            raise ValueError(
                f"phase_visit_counts disagree with phase_history for: {', '.join(mismatched)}"
            )
        if self.phase_history and self.phase_history[-1].phase != self.current_phase:
            raise ValueError(
                f"current_phase {self.current_phase.value} is not the last phase in phase_history"
            )

    @classmethod
    def begin(cls, original_prompt: str, **kwargs) -> LisaState:
        """Create a fresh state that has entered the plan phase once."""
        started_at = kwargs.pop("started_at", None) or _now()
        counts = empty_visit_counts()
        counts[LisaPhase.PLAN] = 1
        return cls(
            original_prompt=original_prompt,
            current_phase=LisaPhase.PLAN,
            phase_visit_counts=counts,
            phase_history=(PhaseVisit(LisaPhase.PLAN, 1, started_at),),
            started_at=started_at,
            **kwargs,
        )

    def visits(self, phase: LisaPhase | None = None) -> int:
        """Visit count of ``phase`` (defaults to the current phase)."""
        return self.phase_visit_counts[phase or self.current_phase]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "mode": self.mode.value,
            "original_prompt": self.original_prompt,
            "current_phase": self.current_phase.value,
            "phase_visit_counts": {
                phase.value: count for phase, count in self.phase_visit_counts.items()
            },
            "active": self.active,
            "evidence_folder_path": self.evidence_folder_path,
            "phase_history": [visit.to_dict() for visit in self.phase_history],
            "started_at": _dump_time(self.started_at),
            "transition_count": self.transition_count,
            "max_transitions": self.max_transitions,
            "progress_file_path": self.progress_file_path,
            "state_file_path": self.state_file_path,
            "working_dir": self.working_dir,
            "status": self.status.value,
            "stop_reason": self.stop_reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> LisaState:
        """Create from dictionary."""
        return cls(
            original_prompt=data["original_prompt"],
            current_phase=LisaPhase(data.get("current_phase", LisaPhase.PLAN.value)),
            phase_visit_counts={
                LisaPhase(name): count
                for name, count in data.get("phase_visit_counts", {}).items()
            },
            active=data.get("active", False),
            evidence_folder_path=data.get("evidence_folder_path"),
            phase_history=tuple(
                PhaseVisit.from_dict(entry) for entry in data.get("phase_history", [])
            ),
            started_at=_load_time(data.get("started_at")),
            transition_count=data.get("transition_count", 0),
            max_transitions=data.get("max_transitions", 50),
            progress_file_path=data.get("progress_file_path"),
            state_file_path=data.get("state_file_path"),
            working_dir=data.get("working_dir"),
            status=LoopStatus(data.get("status", LoopStatus.RUNNING.value)),
            stop_reason=data.get("stop_reason"),
        )


LoopState = RalphState | LisaState


def state_from_dict(data: dict) -> LoopState:
    """Rebuild whichever state type ``data`` describes."""
    mode = LoopMode.from_string(data.get("mode"))
    if mode == LoopMode.RALPH:
        return RalphState.from_dict(data)
    if mode == LoopMode.LISA:
        return LisaState.from_dict(data)
    raise ValueError(f"Unknown loop mode in state file: {data.get('mode')!r}")


class StateManager:
    """Reads and atomically writes one loop state file."""

    def __init__(self, state_file: Path):
        """Initialize state manager.

        Args:
            state_file: Path to the state file (e.g., .agentloops/default/state.json)
        """
        self.state_file = Path(state_file)
        self.state_file.parent.mkdir(parents=True, exist_ok=True)

    def load_state(self) -> LoopState | None:
        """Load state from file, or None if no loop has been recorded yet.

        Raises:
            PersistenceError: If the file exists but cannot be parsed
        """
        if not self.state_file.exists():
            logger.info(f"State file {self.state_file} does not exist")
            return None

        try:
            with open(self.state_file) as f:
                data = json.load(f)
            state = state_from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to load state from {self.state_file}: {e}") from e

        logger.debug(f"Loaded {state.mode.value} state: status={state.status.value}")
        return state

    def save_state(self, state: LoopState) -> None:
        """Write state to a temp file in the same directory, then rename over the target.

        A reader never observes a partially written file.

        Raises:
            PersistenceError: If the state cannot be written
        """
        fd, tmp_name = tempfile.mkstemp(
            dir=self.state_file.parent, prefix=f".{self.state_file.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(state.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.state_file)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save state to {self.state_file}: {e}")
            Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceError(f"Failed to save state to {self.state_file}: {e}") from e
        logger.debug(f"Saved {state.mode.value} state to {self.state_file}")

    def clear(self) -> None:
        """Remove the state file if present."""
        self.state_file.unlink(missing_ok=True)
