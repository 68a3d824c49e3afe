"""Autonomous agent loops.

Two loop variants drive a coding agent through an unattended session:

1. Ralph: a single-phase loop that repeats the task until the agent signals
   completion or the iteration cap is reached. Each iteration can start from a
   fresh context; progress lives in files, not LLM memory.
2. Lisa: a six-phase workflow (plan, plan review, execute, code review,
   validate, final review) where reviewers approve or reject back to an
   earlier work phase.
"""

from agentloops.loops.controller import LoopController, LoopError
from agentloops.loops.driver import LisaDriver, LoopOutcome, RalphDriver
from agentloops.loops.phases import LisaPhase
from agentloops.loops.state import LisaState, LoopMode, LoopStatus, RalphState

__all__ = [
    "LisaDriver",
    "LisaPhase",
    "LisaState",
    "LoopController",
    "LoopError",
    "LoopMode",
    "LoopOutcome",
    "LoopStatus",
    "RalphDriver",
    "RalphState",
]
