"""Session transport interface.

A transport sends prompts into an agent session and reports each finished
turn on a per-session inbound channel (an ``asyncio.Queue``). The loop driver
awaits that channel instead of polling or registering callbacks.

While a loop owns a session, manual input is refused so the loop stays the
only party sending prompts.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """The session could not accept or run a turn."""


class SessionBusyError(RuntimeError):
    """Manual input was sent to a session that a loop currently owns."""


@dataclass(frozen=True)
class TurnCompleted:
    """The agent finished a turn.

    Attributes:
        text: Full accumulated agent output for the turn
        tool_calls: Names of tools the agent executed during the turn
    """

    text: str
    tool_calls: tuple[str, ...] = ()


@dataclass(frozen=True)
class TurnFailed:
    """The session crashed or the agent process exited mid-turn."""

    error: str


TurnEvent = TurnCompleted | TurnFailed


class SessionTransport(ABC):
    """Base transport: channel bookkeeping, session ownership and turn dispatch.

    Subclasses implement ``_run_turn`` (and optionally ``_reset_session``).
    """

    def __init__(self) -> None:
        self._channels: dict[str, asyncio.Queue[TurnEvent]] = {}
        self._owned: set[str] = set()
        self._pending: dict[str, set[asyncio.Task]] = {}

    def channel(self, session_id: str) -> asyncio.Queue[TurnEvent]:
        """Inbound turn-event channel for ``session_id``."""
        if session_id not in self._channels:
            self._channels[session_id] = asyncio.Queue()
        return self._channels[session_id]

    def claim(self, session_id: str) -> None:
        """Mark the session as loop-owned and give it an empty channel.

        Turn outcomes queued before the claim belong to nobody and are dropped.
        """
        if session_id in self._owned:
            raise SessionBusyError(f"Session {session_id} is already owned by a loop")
        self._owned.add(session_id)
        stale = self.channel(session_id).qsize()
        if stale:
            logger.warning(f"Dropping {stale} stale turn event(s) for session {session_id}")
        self._channels[session_id] = asyncio.Queue()

    def release(self, session_id: str) -> None:
        """Give up loop ownership, cancelling turns the owner never collected."""
        self._owned.discard(session_id)
        for task in self._pending.pop(session_id, set()):
            task.cancel()

    def is_owned(self, session_id: str) -> bool:
        return session_id in self._owned

    async def send(self, session_id: str, prompt: str) -> None:
        """Start a turn. Returns once the prompt is accepted, not when the turn ends.

        The outcome arrives later on ``channel(session_id)``.
        """
        task = asyncio.create_task(self._dispatch(session_id, prompt))
        pending = self._pending.setdefault(session_id, set())
        pending.add(task)
        task.add_done_callback(pending.discard)

    async def submit_user_input(self, session_id: str, text: str) -> None:
        """Send manual input, refusing it while a loop owns the session.

        Raises:
            SessionBusyError: If a loop is active on the session
        """
        if self.is_owned(session_id):
            raise SessionBusyError(
                f"Session {session_id} is running an agent loop; stop the loop first"
            )
        await self.send(session_id, text)

    async def clear_context(self, session_id: str) -> None:
        """Drop the session's conversational context so the next turn starts fresh."""
        try:
            await self._reset_session(session_id)
        except Exception as e:
            raise TransportError(f"Failed to clear context for {session_id}: {e}") from e

    async def _dispatch(self, session_id: str, prompt: str) -> None:
        try:
            event: TurnEvent = await self._run_turn(session_id, prompt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Turn failed for session {session_id}")
            event = TurnFailed(error=str(e) or type(e).__name__)
        await self.channel(session_id).put(event)

    @abstractmethod
    async def _run_turn(self, session_id: str, prompt: str) -> TurnEvent:
        """Run one agent turn to completion and describe its outcome."""

    async def _reset_session(self, session_id: str) -> None:  # noqa: B027
        """Forget conversation history for ``session_id``. No-op by default."""
