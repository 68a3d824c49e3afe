"""Session transport backed by OpenHands SDK conversations.

Each session maps to one ``Conversation``. A turn sends the prompt and runs
the conversation until the agent stops; ``Conversation.run()`` blocks, so it
is executed in a worker thread to keep the event loop free. Clearing context
simply starts a new conversation for the session.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from openhands.sdk import LLM, Agent, AgentContext, Conversation, Tool
from openhands.sdk.context import Skill
from openhands.tools.file_editor import FileEditorTool
from openhands.tools.task_tracker import TaskTrackerTool
from openhands.tools.terminal import TerminalTool

from agentloops.transport.base import SessionTransport, TurnCompleted

if TYPE_CHECKING:
    from openhands.sdk.conversation import LocalConversation

logger = logging.getLogger(__name__)

# Default persistence directory for conversation history (same as OpenHands CLI)
DEFAULT_CONVERSATIONS_DIR = os.path.expanduser("~/.openhands/conversations")

LOOP_AGENT_SKILL = """\
You are running inside an unattended agent loop. Nobody reads the chat until
the loop ends, so never stop to ask questions: make a reasonable assumption,
note it, and continue. Each message tells you which phase or iteration you
are in and the exact token to print when you are done. Print that token only
when the work it describes is actually finished."""


def create_loop_agent(llm: LLM) -> Agent:
    """Create the coding agent driven by the loop.

    The agent has:
    - FileEditorTool: Read/write code files
    - TerminalTool: Build, test, inspect git diffs
    - TaskTrackerTool: Plan and track work within a turn

    Args:
        llm: Language model to use for the agent

    Returns:
        Configured Agent instance
    """
    tools = [
        Tool(name=FileEditorTool.name),
        Tool(name=TerminalTool.name),
        Tool(name=TaskTrackerTool.name),
    ]
    skills = [Skill(name="unattended_loop", content=LOOP_AGENT_SKILL, trigger=None)]
    return Agent(llm=llm, tools=tools, agent_context=AgentContext(skills=skills))


def extract_text_from_content(content: str | list | Sequence) -> list[str]:
    """Extract text strings from message content.

    Args:
        content: Either a string, list of content blocks, or Sequence of content blocks

    Returns:
        List of extracted text strings
    """
    if isinstance(content, str):
        return [content]

    texts: list[str] = []
    for block in content:
        if isinstance(block, str):
            texts.append(block)
            continue
        text = getattr(block, "text", None)
        if text is not None:
            texts.append(text)
    return texts


def summarize_events(events: Sequence) -> TurnCompleted:
    """Collapse one turn's conversation events into a TurnCompleted.

    Agent MessageEvent text is concatenated in order; ActionEvent tool names
    are reported as tool calls.
    """
    from openhands.sdk.event import ActionEvent, MessageEvent

    text_parts: list[str] = []
    tool_calls: list[str] = []
    for event in events:
        if isinstance(event, ActionEvent):
            tool_name = getattr(event, "tool_name", None)
            if tool_name:
                tool_calls.append(tool_name)
            continue
        if not isinstance(event, MessageEvent) or event.source != "agent":
            continue
        message = event.llm_message
        if message and message.content:
            text_parts.extend(extract_text_from_content(message.content))
    return TurnCompleted(text="\n".join(text_parts), tool_calls=tuple(tool_calls))


class OpenHandsTransport(SessionTransport):
    """Runs loop turns through OpenHands conversations, one per session."""

    def __init__(
        self,
        llm: LLM,
        workspace: Path,
        conversations_dir: str = DEFAULT_CONVERSATIONS_DIR,
        agent_factory: Callable[[LLM], Agent] = create_loop_agent,
    ):
        """Initialize the transport.

        Args:
            llm: Language model to use
            workspace: Working directory the agent operates in
            conversations_dir: Directory for conversation persistence
            agent_factory: Builds the agent for each new conversation
        """
        super().__init__()
        self.llm = llm
        self.workspace = workspace
        self.conversations_dir = conversations_dir
        self.agent_factory = agent_factory
        self._conversations: dict[str, LocalConversation] = {}

    def conversation(self, session_id: str) -> LocalConversation:
        """Return the session's conversation, creating a fresh one if needed."""
        if session_id not in self._conversations:
            conversation = Conversation(
                agent=self.agent_factory(self.llm),
                workspace=self.workspace,
                persistence_dir=self.conversations_dir,
            )
            logger.info(f"Session {session_id}: new conversation {conversation.id}")
            self._conversations[session_id] = conversation
        return self._conversations[session_id]

    async def _run_turn(self, session_id: str, prompt: str) -> TurnCompleted:
        conversation = self.conversation(session_id)
        return await asyncio.to_thread(self._run_blocking, conversation, prompt)

    @staticmethod
    def _run_blocking(conversation: LocalConversation, prompt: str) -> TurnCompleted:
        start = len(conversation.state.events)
        conversation.send_message(prompt)
        conversation.run()
        events = list(conversation.state.events)[start:]
        return summarize_events(events)

    async def _reset_session(self, session_id: str) -> None:
        conversation = self._conversations.pop(session_id, None)
        if conversation is not None:
            logger.info(f"Session {session_id}: cleared context (dropped {conversation.id})")
