"""In-band control signals emitted by the agent.

The agent declares completion, approval or rejection by printing fixed
literal tokens somewhere in its reply. Detection is plain substring
matching: agents surround the token with prose, so the whole reply is never
compared for equality.

The token strings live in a frozen ``SignalProtocol`` that the detector and
the prompt composer receive at construction time, so both always agree on
the wording of a protocol version.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from agentloops.loops.phases import WORK_PHASES, LisaPhase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalProtocol:
    """Literal tokens of one signal protocol version."""

    phase_complete: str
    review_approved: str = "<lisa-review>APPROVED</lisa-review>"
    review_reject_prefix: str = "<lisa-review>REJECT:"
    review_close: str = "</lisa-review>"

    def reject_token(self, target: LisaPhase) -> str:
        """Full reject token for ``target``, e.g. ``<lisa-review>REJECT:plan</lisa-review>``."""
        return f"{self.review_reject_prefix}{target.value}{self.review_close}"


LISA_PROTOCOL = SignalProtocol(phase_complete="<lisa-phase>COMPLETE</lisa-phase>")
RALPH_PROTOCOL = SignalProtocol(phase_complete="<promise>COMPLETE</promise>")


class SignalKind(Enum):
    PHASE_COMPLETE = "phase-complete"
    REVIEW_APPROVED = "review-approved"
    REVIEW_REJECTED = "review-rejected"


@dataclass(frozen=True)
class Signal:
    """A control signal found in agent output."""

    kind: SignalKind
    target: LisaPhase | None = None

    @classmethod
    def phase_complete(cls) -> Signal:
        return cls(SignalKind.PHASE_COMPLETE)

    @classmethod
    def approved(cls) -> Signal:
        return cls(SignalKind.REVIEW_APPROVED)

    @classmethod
    def rejected(cls, target: LisaPhase) -> Signal:
        return cls(SignalKind.REVIEW_REJECTED, target)


class Expect(Enum):
    """Which class of signal the current phase can legitimately produce."""

    PHASE_COMPLETE = "phase-complete"
    REVIEW_VERDICT = "review-verdict"

    @classmethod
    def for_phase(cls, phase: LisaPhase) -> Expect:
        return cls.REVIEW_VERDICT if phase.is_review else cls.PHASE_COMPLETE


def parse_reject_target(token: str) -> LisaPhase | None:
    """Map a reject target token to a work phase.

    Only the literal names ``plan``, ``execute`` and ``validate`` are valid.
    Review phases (``plan-review``) and anything else return None.
    """
    try:
        phase = LisaPhase(token)
    except ValueError:
        return None
    return phase if phase in WORK_PHASES else None


class SignalDetector:
    """Scans agent output for protocol tokens. Stateless and side-effect free."""

    def __init__(self, protocol: SignalProtocol = LISA_PROTOCOL):
        self.protocol = protocol
        self._reject_pattern = re.compile(
            re.escape(protocol.review_reject_prefix)
            + r"([^<\s]*)"
            + re.escape(protocol.review_close)
        )

    def detect(self, text: str, expecting: Expect = Expect.PHASE_COMPLETE) -> Signal | None:
        """Return the signal in ``text`` for the expected class, or None.

        Args:
            text: Full agent output for one turn
            expecting: Signal class valid in the current phase

        Returns:
            The detected Signal, or None when there is no actionable signal
        """
        if not text:
            return None
        if expecting == Expect.PHASE_COMPLETE:
            return Signal.phase_complete() if self.protocol.phase_complete in text else None
        return self._detect_verdict(text)

    def _detect_verdict(self, text: str) -> Signal | None:
        # Any reject marker outranks approval: a hedging reviewer is rejecting.
        if self.protocol.review_reject_prefix in text:
            matches = self._reject_pattern.findall(text)
            if not matches:
                logger.warning("Malformed reject marker; ignoring verdict")
                return None
            token = matches[-1]
            target = parse_reject_target(token)
            if target is None:
                logger.warning(f"Invalid reject target {token!r}; ignoring verdict")
                return None
            return Signal.rejected(target)

        if self.protocol.review_approved in text:
            return Signal.approved()
        return None
