"""Lisa workflow phases and the tables that connect them."""

from __future__ import annotations

from enum import Enum


class LisaPhase(Enum):
    """A stage of the Lisa workflow, in workflow order."""

    PLAN = "plan"
    PLAN_REVIEW = "plan-review"
    EXECUTE = "execute"
    CODE_REVIEW = "code-review"
    VALIDATE = "validate"
    FINAL_REVIEW = "final-review"

    @property
    def is_review(self) -> bool:
        return self in REVIEW_PHASES

    @property
    def is_work(self) -> bool:
        return self in WORK_PHASES

    @property
    def label(self) -> str:
        """Human-readable phase name, e.g. "Code Review"."""
        return self.value.replace("-", " ").title()


WORK_PHASES = frozenset({LisaPhase.PLAN, LisaPhase.EXECUTE, LisaPhase.VALIDATE})
REVIEW_PHASES = frozenset({LisaPhase.PLAN_REVIEW, LisaPhase.CODE_REVIEW, LisaPhase.FINAL_REVIEW})

# Where a phase goes on PHASE_COMPLETE (work) or APPROVED (review).
# FINAL_REVIEW maps to None: approval there ends the loop.
NEXT_PHASE: dict[LisaPhase, LisaPhase | None] = {
    LisaPhase.PLAN: LisaPhase.PLAN_REVIEW,
    LisaPhase.PLAN_REVIEW: LisaPhase.EXECUTE,
    LisaPhase.EXECUTE: LisaPhase.CODE_REVIEW,
    LisaPhase.CODE_REVIEW: LisaPhase.VALIDATE,
    LisaPhase.VALIDATE: LisaPhase.FINAL_REVIEW,
    LisaPhase.FINAL_REVIEW: None,
}

# Work phases each review phase may send control back to.
REJECT_TARGETS: dict[LisaPhase, tuple[LisaPhase, ...]] = {
    LisaPhase.PLAN_REVIEW: (LisaPhase.PLAN,),
    LisaPhase.CODE_REVIEW: (LisaPhase.PLAN, LisaPhase.EXECUTE),
    LisaPhase.FINAL_REVIEW: (LisaPhase.PLAN, LisaPhase.EXECUTE, LisaPhase.VALIDATE),
}
