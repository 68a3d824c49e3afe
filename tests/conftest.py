"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import tempfile
from collections import defaultdict
from collections.abc import Generator
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from pydantic import SecretStr

from agentloops.transport.base import SessionTransport, TurnCompleted, TurnEvent

if TYPE_CHECKING:
    from openhands.sdk import LLM


class ScriptedTransport(SessionTransport):
    """Transport that replays canned agent replies instead of running an agent.

    A reply that is an Exception makes the turn fail. Running out of replies
    also fails the turn, so a test notices any unexpected extra turn. When
    ``gate`` is set, each turn waits for it before taking its reply.
    """

    def __init__(self):
        super().__init__()
        self.replies: dict[str, list[str | Exception]] = defaultdict(list)
        self.prompts: dict[str, list[str]] = defaultdict(list)
        self.resets: list[str] = []
        self.fail_reset = False
        self.gate: asyncio.Event | None = None

    def script(self, session_id: str, *replies: str | Exception) -> None:
        self.replies[session_id].extend(replies)

    async def _run_turn(self, session_id: str, prompt: str) -> TurnEvent:
        self.prompts[session_id].append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        if not self.replies[session_id]:
            raise RuntimeError(f"no scripted reply left for {session_id}")
        reply = self.replies[session_id].pop(0)
        if isinstance(reply, Exception):
            raise reply
        return TurnCompleted(text=reply)

    async def _reset_session(self, session_id: str) -> None:
        if self.fail_reset:
            raise RuntimeError("agent process gone")
        self.resets.append(session_id)


@pytest.fixture
def temp_workspace() -> Generator[Path, None, None]:
    """Create a temporary workspace directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def scripted_transport() -> ScriptedTransport:
    """Transport with no replies scripted yet."""
    return ScriptedTransport()


@pytest.fixture
def mock_llm() -> LLM:
    """Create a mock LLM for testing.

    Uses a fake model name and API key since we're not making actual API calls.
    """
    from openhands.sdk import LLM

    return LLM(
        model="test/mock-model",
        api_key=SecretStr("test-api-key"),
    )
