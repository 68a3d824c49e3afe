"""Prompt composition for the Ralph and Lisa loops.

Every prompt is assembled in a fixed order:
header, reviewer feedback, original task, previous response, phase instructions.
The previous response is capped so prompts stay bounded however long the loop runs.
"""

from __future__ import annotations

from agentloops.loops.phases import REJECT_TARGETS, LisaPhase
from agentloops.loops.signals import LISA_PROTOCOL, RALPH_PROTOCOL, SignalProtocol

EXCERPT_LIMIT = 2000
TRUNCATION_MARKER = "\n\n... (truncated)"

NO_COMMIT_WARNING = """\
⚠️ **IMPORTANT: DO NOT commit or push changes during this loop!**
- Do NOT run `git add`, `git commit`, or `git push`
- The user will commit changes after the loop completes
- Only make code changes to files, do not stage or commit them"""

PHASE_TITLES = {
    LisaPhase.PLAN: ("📋", "PLANNER"),
    LisaPhase.PLAN_REVIEW: ("👀", "PLAN REVIEW"),
    LisaPhase.EXECUTE: ("💻", "CODE"),
    LisaPhase.CODE_REVIEW: ("👀", "CODE REVIEW"),
    LisaPhase.VALIDATE: ("🧪", "TEST"),
    LisaPhase.FINAL_REVIEW: ("👀", "FINAL REVIEW"),
}

PLAN_INSTRUCTIONS = """\
You are the **Planner** agent. Create a comprehensive plan for the task.

### Address ALL original requirements
- Every item in the original request must map to at least one task
- Do not skip, simplify, or defer any part of the request
- Where something is unclear, make a reasonable assumption and write it down

### Deliverable: `plan.md` in the working directory containing
1. Problem statement listing every requirement
2. Proposed approach and architecture decisions
3. A workplan with a checkbox per atomic, verifiable task
4. Acceptance criteria for each requirement
5. Testing strategy, including edge cases and error handling"""

PLAN_REVIEW_INSTRUCTIONS = """\
You are the **Reviewer** agent. Review `plan.md` BEFORE any code is written.

### Check the plan for
1. **Completeness** - does it cover EVERY requirement of the original task?
2. **Clarity** - is each task specific? Vague tasks are not acceptable
3. **Architecture** - will the approach actually work?
4. **Acceptance criteria** - can each requirement be verified?
5. **Risk** - are edge cases and error handling considered?

Default to REJECT when in doubt. A flawed plan wastes the coding phase.
Always include specific feedback: what is missing, unclear, or wrong."""

EXECUTE_INSTRUCTIONS = """\
You are the **Coder** agent. The plan has been approved. Implement it.

### Responsibilities
1. Read `plan.md` and implement each task systematically
2. Check off completed items in `plan.md` as you go
3. Document significant decisions or deviations from the plan
4. Build and make sure the code compiles without errors
5. Run basic sanity checks while you work"""

CODE_REVIEW_INSTRUCTIONS = """\
You are the **Reviewer** agent. Review the implementation BEFORE testing.
Run `git diff` to see every change the Coder made.

### Check the code for
1. **Correctness** - is every task in `plan.md` actually implemented?
2. **Quality** - clean code, good naming, no duplication
3. **Security** - no new vulnerabilities
4. **Architecture** - fits the codebase patterns, no hacks
5. **Error handling and performance**

Default to REJECT if anything is incomplete or sloppy.
Always include specific feedback: what is wrong, where, and what must change."""

VALIDATE_INSTRUCTIONS = """\
You are the **Tester** agent. Verify that the implementation actually works.

### Responsibilities
1. Write a test plan to `{evidence}/test-plan.md`
2. Run the existing test suite and write new tests for the changes
3. Exercise the exact scenario from the original task, not unrelated features
4. Capture screenshots of the RUNNING application (not code, docs or terminals)
   into `{evidence}/screenshots/` with sequential names like `01-initial-state.png`
5. Record results in `{evidence}/test-results.md`, UX observations in
   `{evidence}/ux-notes.md` and acceptance criteria in `{evidence}/checklist.md`
6. Summarise all evidence in `{evidence}/summary.html`"""

FINAL_REVIEW_INSTRUCTIONS = """\
You are the **Reviewer** agent. This is the FINAL review before completion.
Default stance: REJECT unless everything is genuinely complete.

### Review ALL artifacts
1. `plan.md` - every task checked off and every original requirement addressed?
2. `git diff` - is the change production-ready?
3. `{evidence}/summary.html` - present and complete?
4. `{evidence}/screenshots/` - view each one: do they show the feature in the running app?
5. `{evidence}/test-results.md` - did all tests pass?

Reject to the phase that must redo its work, with detailed feedback."""

PHASE_INSTRUCTIONS = {
    LisaPhase.PLAN: PLAN_INSTRUCTIONS,
    LisaPhase.PLAN_REVIEW: PLAN_REVIEW_INSTRUCTIONS,
    LisaPhase.EXECUTE: EXECUTE_INSTRUCTIONS,
    LisaPhase.CODE_REVIEW: CODE_REVIEW_INSTRUCTIONS,
    LisaPhase.VALIDATE: VALIDATE_INSTRUCTIONS,
    LisaPhase.FINAL_REVIEW: FINAL_REVIEW_INSTRUCTIONS,
}

RALPH_INSTRUCTIONS = """\
## Instructions
Keep working on the original task until it is fully done:
1. Read {progress} (if present) to see what earlier iterations accomplished
2. Continue with the remaining work; do not redo finished work
3. Build and test your changes
4. Append a short note of what you did to {progress}
5. Only when EVERY requirement is met, output exactly:
{signal}

Do not output the completion token if anything is left to do."""

RALPH_EVIDENCE_INSTRUCTIONS = """\
## Evidence Required
Completion is only accepted with evidence. Before signalling completion,
capture screenshots of the delivered feature running into
`{evidence}/screenshots/`."""


def truncate_excerpt(text: str, limit: int = EXCERPT_LIMIT) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut.

    Args:
        text: Prior agent output
        limit: Maximum characters kept

    Returns:
        The text unchanged if short enough, else its first ``limit``
        characters followed by a truncation marker
    """
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


class PromptComposer:
    """Builds the next instruction for the agent."""

    def __init__(
        self,
        protocol: SignalProtocol = LISA_PROTOCOL,
        excerpt_limit: int = EXCERPT_LIMIT,
    ):
        self.protocol = protocol
        self.excerpt_limit = excerpt_limit

    def compose_lisa(
        self,
        phase: LisaPhase,
        visit_count: int,
        original_prompt: str,
        last_response: str,
        reviewer_feedback: str | None = None,
        evidence_dir: str = "evidence",
    ) -> str:
        """Compose the prompt for one Lisa phase visit.

        Args:
            phase: Phase being entered
            visit_count: How many times the phase has been entered, this visit included
            original_prompt: The user's task
            last_response: Raw output of the previous turn
            reviewer_feedback: Output of the review that rejected back to this phase
            evidence_dir: Folder the tester writes evidence into

        Returns:
            Prompt text
        """
        emoji, title = PHASE_TITLES[phase]
        visit_label = f" (Visit #{visit_count})" if visit_count > 1 else ""
        feedback = (
            f"\n---\n\n## Reviewer Feedback (ADDRESS THIS):\n\n"
            f"Address each point of this feedback specifically.\n\n{reviewer_feedback}\n"
            if reviewer_feedback
            else ""
        )
        instructions = PHASE_INSTRUCTIONS[phase].format(evidence=evidence_dir)

        return f"""\
{emoji} **Lisa Simpson Loop - {title}**
{feedback}
---

## Original Task:

{original_prompt}

---

## Previous Response (context):

{truncate_excerpt(last_response, self.excerpt_limit) or "No previous response."}

---

## {emoji} {title} PHASE{visit_label}

{NO_COMMIT_WARNING}

{instructions}

{self._signal_instructions(phase)}"""

    def _signal_instructions(self, phase: LisaPhase) -> str:
        if not phase.is_review:
            return (
                "When this phase is complete and ready for review, output exactly:\n"
                f"{self.protocol.phase_complete}"
            )
        rejects = "\nOR\n".join(
            self.protocol.reject_token(target) for target in reversed(REJECT_TARGETS[phase])
        )
        return (
            "### Your Decision\n"
            "If APPROVING, output exactly:\n"
            f"{self.protocol.review_approved}\n\n"
            "If REJECTING, output the phase that must redo its work:\n"
            f"{rejects}"
        )

    def compose_ralph(
        self,
        iteration: int,
        max_iterations: int,
        original_prompt: str,
        last_response: str = "",
        *,
        require_evidence: bool = False,
        evidence_dir: str = "evidence",
        progress_file: str | None = None,
        notice: str | None = None,
    ) -> str:
        """Compose the prompt for one Ralph iteration.

        Args:
            iteration: 1-based iteration about to run
            max_iterations: Iteration cap
            original_prompt: The user's task
            last_response: Raw output of the previous iteration
            require_evidence: Whether completion needs screenshot evidence
            evidence_dir: Evidence folder relative to the working directory
            progress_file: Progress log the agent should read and extend
            notice: Extra note from the controller, e.g. missing evidence
        """
        verb = "Continuing" if iteration > 1 else "Starting"
        sections = [
            f"🔁 **Ralph Loop** - {verb} autonomous execution "
            f"(iteration {iteration} of {max_iterations})."
        ]
        if notice:
            sections.append(f"## ⚠️ Notice\n\n{notice}")
        sections.append(f"## Original Task:\n\n{original_prompt}")
        if last_response:
            sections.append(
                "## Previous Response (context):\n\n"
                + truncate_excerpt(last_response, self.excerpt_limit)
            )
        sections.append(
            RALPH_INSTRUCTIONS.format(
                progress=f"`{progress_file}`" if progress_file else "the progress notes",
                signal=self.protocol.phase_complete,
            )
        )
        if require_evidence:
            sections.append(RALPH_EVIDENCE_INSTRUCTIONS.format(evidence=evidence_dir))
        return "\n\n---\n\n".join(sections)


def ralph_composer() -> PromptComposer:
    """Composer wired to the Ralph completion token."""
    return PromptComposer(RALPH_PROTOCOL)
