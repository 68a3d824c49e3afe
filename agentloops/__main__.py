"""CLI entry point for agentloops.

Usage:
    python -m agentloops ralph "Add dark mode"          # Iterate until done (max 5)
    python -m agentloops ralph "..." -n 10 --require-evidence
    python -m agentloops lisa "Fix the login bug"       # Plan/review/execute/validate
    python -m agentloops status                         # Show the persisted loop state
    python -m agentloops resume                         # Continue after a crash/restart

Or via the installed command:
    agentloops ralph "Add dark mode" --no-clear-context
    agentloops lisa "Fix the login bug" --max-transitions 30
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Set default log level to WARNING before importing SDK (reduces verbose output)
# Users can override with LOG_LEVEL=INFO or LOG_LEVEL=DEBUG
if "LOG_LEVEL" not in os.environ:
    os.environ["LOG_LEVEL"] = "WARNING"

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel

from agentloops._version import get_full_version_string
from agentloops.config import LoopsConfig, load_config
from agentloops.loops.controller import LoopController, LoopError
from agentloops.loops.driver import LoopOutcome
from agentloops.loops.state import (
    LisaState,
    LoopMode,
    LoopState,
    LoopStatus,
    PersistenceError,
    StateManager,
)

# Load environment variables
load_dotenv()

console = Console()

DEFAULT_SESSION = "default"


def get_llm():
    """Create LLM from environment variables."""
    from openhands.sdk import LLM
    from pydantic import SecretStr

    model = os.getenv("LLM_MODEL", "anthropic/claude-sonnet-4-20250514")
    base_url = os.getenv("LLM_BASE_URL")

    api_key = (
        os.getenv("LLM_API_KEY")
        or os.getenv("ANTHROPIC_API_KEY")
        or os.getenv("OPENAI_API_KEY")
        or os.getenv("OPENHANDS_API_KEY")
    )

    if not api_key:
        console.print("[red]Error: No API key found.[/]")
        console.print("[dim]Set one of: LLM_API_KEY, ANTHROPIC_API_KEY, OPENAI_API_KEY[/]")
        sys.exit(1)

    return LLM(model=model, api_key=SecretStr(api_key), base_url=base_url)


def create_controller(workspace: Path, config: LoopsConfig) -> LoopController:
    """Build a controller that drives OpenHands conversations in ``workspace``."""
    from agentloops.transport.openhands import OpenHandsTransport

    llm = get_llm()
    console.print(f"[dim]Model: {llm.model}[/]")
    console.print()
    return LoopController(OpenHandsTransport(llm, workspace), workspace=workspace, config=config)


async def _drive(
    controller: LoopController,
    session_id: str,
    *,
    mode: LoopMode | None = None,
    prompt: str = "",
    loop_config=None,
) -> LoopOutcome:
    """Start a loop (or resume one when ``mode`` is None) and wait for it to halt.

    Cancelling this coroutine cancels the driver, which records the loop as aborted.
    """
    if mode is None:
        controller.resume(session_id)
    else:
        controller.start(session_id, mode, prompt, loop_config)
    return await controller.wait(session_id)


def exit_code(outcome: LoopOutcome) -> int:
    """0 when the loop completed, 1 for any other terminal status."""
    return 0 if outcome.status == LoopStatus.COMPLETE else 1


def run_ralph(
    prompt: str,
    workspace: Path,
    session_id: str,
    *,
    max_iterations: int | None = None,
    require_evidence: bool | None = None,
    clear_context: bool | None = None,
) -> int:
    """Run a Ralph loop to completion.

    Returns:
        Exit code (0 for complete, 1 otherwise)
    """
    config = load_config(workspace)
    try:
        ralph_config = config.ralph_config(
            max_iterations=max_iterations,
            require_evidence=require_evidence,
            clear_context=clear_context,
        )
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1

    controller = create_controller(workspace, config)
    outcome = asyncio.run(
        _drive(controller, session_id, mode=LoopMode.RALPH, prompt=prompt, loop_config=ralph_config)
    )
    return exit_code(outcome)


def run_lisa(
    prompt: str,
    workspace: Path,
    session_id: str,
    *,
    max_transitions: int | None = None,
) -> int:
    """Run a Lisa loop to completion.

    Returns:
        Exit code (0 for complete, 1 otherwise)
    """
    config = load_config(workspace)
    try:
        lisa_config = config.lisa_config(max_transitions=max_transitions)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1

    controller = create_controller(workspace, config)
    outcome = asyncio.run(
        _drive(controller, session_id, mode=LoopMode.LISA, prompt=prompt, loop_config=lisa_config)
    )
    return exit_code(outcome)


def run_resume(workspace: Path, session_id: str) -> int:
    """Resume a persisted loop.

    Returns:
        Exit code (0 for complete, 1 otherwise)
    """
    config = load_config(workspace)
    state_path = workspace / config.paths.get_state_path(session_id)
    if not state_path.exists():
        console.print(f"[red]Error:[/] No loop state at {state_path}")
        return 1

    controller = create_controller(workspace, config)
    try:
        outcome = asyncio.run(_drive(controller, session_id))
    except (LoopError, PersistenceError) as e:
        console.print(f"[red]Error:[/] {e}")
        return 1
    return exit_code(outcome)


def format_state(state: LoopState) -> str:
    """Render a loop state for the status panel."""
    lines = [
        f"[bold]Mode:[/] {state.mode.value}",
        f"[bold]Status:[/] {state.status.value}" + (" (active)" if state.active else ""),
        f"[bold]Started:[/] {state.started_at:%Y-%m-%d %H:%M}",
        f"[bold]Task:[/] {state.original_prompt}",
    ]
    if isinstance(state, LisaState):
        lines.append(f"[bold]Phase:[/] {state.current_phase.label}")
        lines.append(f"[bold]Transitions:[/] {state.transition_count}")
        visits = ", ".join(
            f"{phase.value}={count}" for phase, count in state.phase_visit_counts.items()
        )
        lines.append(f"[bold]Visits:[/] {visits}")
    else:
        lines.append(f"[bold]Iteration:[/] {state.current_iteration}/{state.max_iterations}")
        lines.append(f"[bold]Require evidence:[/] {state.require_evidence}")
    if state.stop_reason:
        lines.append(f"[bold]Reason:[/] {state.stop_reason}")
    return "\n".join(lines)


def run_status(workspace: Path, session_id: str) -> int:
    """Print the persisted loop state for a session.

    Returns:
        Exit code (0 if a state was shown, 1 otherwise)
    """
    config = load_config(workspace)
    state_path = workspace / config.paths.get_state_path(session_id)
    if not state_path.exists():
        console.print(f"[yellow]No loop state for session '{session_id}'[/]")
        return 1

    try:
        state = StateManager(state_path).load_state()
    except PersistenceError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1
    if state is None:
        console.print(f"[yellow]No loop state for session '{session_id}'[/]")
        return 1

    console.print(Panel(format_state(state), title=f"Session {session_id}", expand=False))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = argparse.ArgumentParser(
        prog="agentloops",
        description="agentloops - run a coding agent in an unattended Ralph or Lisa loop",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  agentloops ralph "Add dark mode"             Iterate until done (default max 5)
  agentloops ralph "..." --require-evidence    Demand screenshots before accepting completion
  agentloops lisa "Fix the login bug"          Plan, review, execute, validate
  agentloops status                            Show the persisted loop state
  agentloops resume                            Continue after a crash/restart

Configuration:
  Create .agentloops/config.toml in your repo to customize defaults:
    [paths]
    state_dir = ".agentloops"
    evidence_dir = "evidence"

    [ralph]
    max_iterations = 5
    require_evidence = false
    clear_context = true

    [lisa]
    max_transitions = 50
""",
    )
    parser.add_argument("-V", "--version", action="version", version=get_full_version_string())

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--workspace",
        "-w",
        type=Path,
        default=None,
        help="Workspace directory (defaults to git root)",
    )
    common.add_argument(
        "--session",
        "-s",
        default=DEFAULT_SESSION,
        help=f"Session id (default: {DEFAULT_SESSION})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    ralph_parser = subparsers.add_parser(
        "ralph", parents=[common], help="Repeat a task until the agent signals completion"
    )
    ralph_parser.add_argument("prompt", help="Task for the agent")
    ralph_parser.add_argument(
        "--max-iterations",
        "-n",
        type=int,
        default=None,
        help="Iteration cap (default from config, else 5)",
    )
    ralph_parser.add_argument(
        "--require-evidence",
        action="store_true",
        default=None,
        help="Only accept completion once screenshots exist in the evidence folder",
    )
    ralph_parser.add_argument(
        "--no-clear-context",
        dest="clear_context",
        action="store_false",
        default=None,
        help="Keep the conversation between iterations",
    )

    lisa_parser = subparsers.add_parser(
        "lisa", parents=[common], help="Run the plan/review/execute/validate workflow"
    )
    lisa_parser.add_argument("prompt", help="Task for the agent")
    lisa_parser.add_argument(
        "--max-transitions",
        type=int,
        default=None,
        help="Stop after this many phase transitions (0 = unbounded, default 50)",
    )

    subparsers.add_parser("status", parents=[common], help="Show the persisted loop state")
    subparsers.add_parser("resume", parents=[common], help="Resume a persisted loop")

    args = parser.parse_args(argv)
    workspace = args.workspace.resolve() if args.workspace else find_git_root(Path.cwd())

    if args.command == "status":
        return run_status(workspace, args.session)

    if args.command == "resume":
        return run_resume(workspace, args.session)

    if args.command == "lisa":
        return run_lisa(
            args.prompt, workspace, args.session, max_transitions=args.max_transitions
        )

    return run_ralph(
        args.prompt,
        workspace,
        args.session,
        max_iterations=args.max_iterations,
        require_evidence=args.require_evidence,
        clear_context=args.clear_context,
    )


def find_git_root(start_path: Path) -> Path:
    """Find the git repository root from a starting path.

    Args:
        start_path: Directory to start searching from

    Returns:
        Path to the git root, or start_path if not found
    """
    current = start_path.resolve()
    while current != current.parent:
        if (current / ".git").exists():
            return current
        current = current.parent
    return start_path


if __name__ == "__main__":
    sys.exit(main())
