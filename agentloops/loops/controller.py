"""Session-level entry points: start, abort, inspect and resume loops.

Each session runs at most one loop. Loops in different sessions share no
state; each owns its driver task, its transport channel and its files.
``start`` and ``resume`` schedule the driver on the running event loop, so
they must be called from async code.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path

from agentloops.config import LisaConfig, LoopsConfig, RalphConfig
from agentloops.evidence import ScreenshotEvidenceChecker
from agentloops.loops.driver import (
    EvidenceChecker,
    LisaDriver,
    LoopDriver,
    LoopOutcome,
    RalphDriver,
)
from agentloops.loops.progress import ProgressLog
from agentloops.loops.state import (
    LisaState,
    LoopMode,
    LoopState,
    LoopStatus,
    RalphState,
    StateManager,
)
from agentloops.transport.base import SessionBusyError, SessionTransport

logger = logging.getLogger(__name__)


class LoopError(RuntimeError):
    """A loop could not be started, resumed or found."""


class LoopController:
    """Owns the loop drivers of all sessions."""

    def __init__(
        self,
        transport: SessionTransport,
        *,
        workspace: Path | None = None,
        config: LoopsConfig | None = None,
        evidence_checker: EvidenceChecker | None = None,
    ):
        """Initialize the controller.

        Args:
            transport: Transport shared by all sessions
            workspace: Directory that relative state/progress paths resolve against
            config: Loop configuration (paths and defaults)
            evidence_checker: Gate for Ralph loops that require evidence
        """
        self.transport = transport
        self.workspace = workspace or Path.cwd()
        self.config = config or LoopsConfig()
        self.evidence_checker = evidence_checker or ScreenshotEvidenceChecker(
            self.config.paths.evidence_dir
        )
        self._drivers: dict[str, LoopDriver] = {}
        self._tasks: dict[str, asyncio.Task[LoopOutcome]] = {}

    def is_active(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    def start(
        self,
        session_id: str,
        mode: LoopMode,
        prompt: str,
        config: RalphConfig | LisaConfig | None = None,
    ) -> LoopState:
        """Start a loop on a session.

        Args:
            session_id: Session to drive
            mode: LoopMode.RALPH or LoopMode.LISA
            prompt: The user's task
            config: Loop settings; defaults come from the controller config

        Returns:
            The initial loop state

        Raises:
            SessionBusyError: If the session already runs a loop
            ValueError: If mode is OFF or config does not match mode
        """
        if self.is_active(session_id):
            raise SessionBusyError(f"Session {session_id} already runs a loop")

        paths = self.config.paths
        common = {
            "progress_file_path": str(self.workspace / paths.get_progress_path(session_id)),
            "state_file_path": str(self.workspace / paths.get_state_path(session_id)),
            "working_dir": str(self.workspace),
        }

        if mode == LoopMode.RALPH:
            ralph = config or self.config.ralph
            if not isinstance(ralph, RalphConfig):
                raise ValueError("Ralph loops need a RalphConfig")
            state: LoopState = RalphState(
                original_prompt=prompt,
                max_iterations=ralph.max_iterations,
                require_evidence=ralph.require_evidence,
                clear_context_between_iterations=ralph.clear_context,
                **common,
            )
        elif mode == LoopMode.LISA:
            lisa = config or self.config.lisa
            if not isinstance(lisa, LisaConfig):
                raise ValueError("Lisa loops need a LisaConfig")
            state = LisaState.begin(
                prompt,
                max_transitions=lisa.max_transitions,
                evidence_folder_path=str(self.workspace / paths.evidence_dir),
                **common,
            )
        else:
            raise ValueError("Cannot start a loop in mode 'off'; use abort() to stop one")

        self._launch(session_id, state)
        return state

    def resume(self, session_id: str, state_file: Path | None = None) -> LoopState:
        """Continue a loop from its persisted state after a crash or restart.

        Args:
            session_id: Session to drive
            state_file: State file to load; defaults to the session's configured path

        Returns:
            The resumed loop state

        Raises:
            LoopError: If there is nothing resumable in the state file
            SessionBusyError: If the session already runs a loop
        """
        if self.is_active(session_id):
            raise SessionBusyError(f"Session {session_id} already runs a loop")

        path = state_file or self.workspace / self.config.paths.get_state_path(session_id)
        state = StateManager(path).load_state()
        if state is None:
            raise LoopError(f"No loop state found at {path}")
        if state.status in (LoopStatus.COMPLETE, LoopStatus.INCOMPLETE):
            raise LoopError(f"Loop already finished ({state.status.value}); start a new one")

        resumed = replace(
            state,
            active=True,
            status=LoopStatus.RUNNING,
            stop_reason=None,
            state_file_path=str(path),
        )
        logger.info(f"Resuming {resumed.mode.value} loop for session {session_id}")
        self._launch(session_id, resumed)
        return resumed

    def _launch(self, session_id: str, state: LoopState) -> None:
        state_manager = StateManager(Path(state.state_file_path))
        progress_log = ProgressLog(Path(state.progress_file_path)) if state.progress_file_path else None
        evidence_dir = self.config.paths.evidence_dir

        driver: LoopDriver
        if isinstance(state, RalphState):
            driver = RalphDriver(
                session_id,
                state,
                self.transport,
                state_manager=state_manager,
                progress_log=progress_log,
                evidence_checker=self.evidence_checker,
                evidence_dir=evidence_dir,
            )
        else:
            driver = LisaDriver(
                session_id,
                state,
                self.transport,
                state_manager=state_manager,
                progress_log=progress_log,
                evidence_dir=evidence_dir,
            )

        self._drivers[session_id] = driver
        self._tasks[session_id] = asyncio.create_task(
            driver.run(), name=f"agentloop-{session_id}"
        )

    def abort(self, session_id: str) -> bool:
        """Ask the session's loop to stop after the current turn.

        Returns:
            True if an active loop was asked to stop
        """
        if not self.is_active(session_id):
            return False
        self._drivers[session_id].request_abort()
        return True

    def get_state(self, session_id: str) -> LoopState | None:
        """Latest durable state of the session's loop, or None if it never ran one."""
        driver = self._drivers.get(session_id)
        return driver.state if driver else None

    def get_mode(self, session_id: str) -> LoopMode:
        """Mode of the session's running loop; OFF when none is running."""
        if not self.is_active(session_id):
            return LoopMode.OFF
        return self._drivers[session_id].state.mode

    async def wait(self, session_id: str) -> LoopOutcome:
        """Wait for the session's loop to halt and return its outcome.

        Raises:
            LoopError: If the session never ran a loop
        """
        task = self._tasks.get(session_id)
        if task is None:
            raise LoopError(f"No loop for session {session_id}")
        return await task
