"""Tests for in-band signal detection."""

import pytest

from agentloops.loops.phases import LisaPhase
from agentloops.loops.signals import (
    LISA_PROTOCOL,
    RALPH_PROTOCOL,
    Expect,
    Signal,
    SignalDetector,
    SignalKind,
    SignalProtocol,
    parse_reject_target,
)


@pytest.fixture
def detector() -> SignalDetector:
    return SignalDetector(LISA_PROTOCOL)


class TestPhaseComplete:
    """Tests for the work-phase completion token."""

    def test_token_surrounded_by_prose(self, detector: SignalDetector) -> None:
        """The token counts anywhere in the reply."""
        text = "I wrote plan.md.\n\n<lisa-phase>COMPLETE</lisa-phase>\n\nThanks!"
        assert detector.detect(text) == Signal.phase_complete()

    def test_no_token(self, detector: SignalDetector) -> None:
        assert detector.detect("Still working on it") is None

    def test_empty_text(self, detector: SignalDetector) -> None:
        assert detector.detect("") is None
        assert detector.detect("", Expect.REVIEW_VERDICT) is None

    def test_partial_token_is_not_a_signal(self, detector: SignalDetector) -> None:
        assert detector.detect("<lisa-phase>COMPLETE") is None

    def test_review_tokens_ignored_when_expecting_completion(
        self, detector: SignalDetector
    ) -> None:
        """A verdict during a work phase is not a completion."""
        assert detector.detect("<lisa-review>APPROVED</lisa-review>") is None

    def test_ralph_protocol(self) -> None:
        detector = SignalDetector(RALPH_PROTOCOL)
        assert detector.detect("done <promise>COMPLETE</promise>") == Signal.phase_complete()
        assert detector.detect("<lisa-phase>COMPLETE</lisa-phase>") is None

    def test_detection_is_idempotent(self, detector: SignalDetector) -> None:
        text = "ok <lisa-phase>COMPLETE</lisa-phase>"
        assert detector.detect(text) == detector.detect(text)


class TestReviewVerdict:
    """Tests for approve/reject detection in review phases."""

    def test_approved(self, detector: SignalDetector) -> None:
        text = "Looks great.\n<lisa-review>APPROVED</lisa-review>"
        assert detector.detect(text, Expect.REVIEW_VERDICT) == Signal.approved()

    @pytest.mark.parametrize("target", [LisaPhase.PLAN, LisaPhase.EXECUTE, LisaPhase.VALIDATE])
    def test_reject_targets(self, detector: SignalDetector, target: LisaPhase) -> None:
        text = f"Missing tests.\n<lisa-review>REJECT:{target.value}</lisa-review>"
        assert detector.detect(text, Expect.REVIEW_VERDICT) == Signal.rejected(target)

    @pytest.mark.parametrize(
        "text",
        [
            "<lisa-review>REJECT: plan </lisa-review>",
            "<lisa-review>REJECT:plan </lisa-review>",
            "<lisa-review>REJECT: execute</lisa-review>",
        ],
    )
    def test_reject_with_whitespace_yields_nothing(self, detector: SignalDetector, text: str) -> None:
        """The target must sit directly between the prefix and the closing tag."""
        assert detector.detect(text, Expect.REVIEW_VERDICT) is None

    def test_review_phase_is_not_a_reject_target(self, detector: SignalDetector) -> None:
        text = "<lisa-review>REJECT:plan-review</lisa-review>"
        assert detector.detect(text, Expect.REVIEW_VERDICT) is None

    def test_unknown_target(self, detector: SignalDetector) -> None:
        text = "<lisa-review>REJECT:deploy</lisa-review>"
        assert detector.detect(text, Expect.REVIEW_VERDICT) is None

    def test_malformed_reject_yields_nothing(self, detector: SignalDetector) -> None:
        """A reject prefix without its closing tag is not a verdict."""
        text = "<lisa-review>REJECT:execute and more prose"
        assert detector.detect(text, Expect.REVIEW_VERDICT) is None

    def test_reject_outranks_approval(self, detector: SignalDetector) -> None:
        text = (
            "<lisa-review>APPROVED</lisa-review>\n"
            "Actually no.\n<lisa-review>REJECT:plan</lisa-review>"
        )
        assert detector.detect(text, Expect.REVIEW_VERDICT) == Signal.rejected(LisaPhase.PLAN)

    def test_last_reject_wins(self, detector: SignalDetector) -> None:
        text = (
            "<lisa-review>REJECT:plan</lisa-review>\n"
            "On reflection the plan is fine.\n"
            "<lisa-review>REJECT:execute</lisa-review>"
        )
        assert detector.detect(text, Expect.REVIEW_VERDICT) == Signal.rejected(LisaPhase.EXECUTE)

    def test_completion_token_ignored_when_expecting_verdict(
        self, detector: SignalDetector
    ) -> None:
        assert detector.detect("<lisa-phase>COMPLETE</lisa-phase>", Expect.REVIEW_VERDICT) is None


class TestHelpers:
    """Tests for protocol helpers."""

    def test_parse_reject_target(self) -> None:
        assert parse_reject_target("plan") == LisaPhase.PLAN
        assert parse_reject_target("execute") == LisaPhase.EXECUTE
        assert parse_reject_target("validate") == LisaPhase.VALIDATE
        assert parse_reject_target("code-review") is None
        assert parse_reject_target("PLAN") is None
        assert parse_reject_target("") is None

    def test_reject_token(self) -> None:
        assert (
            LISA_PROTOCOL.reject_token(LisaPhase.EXECUTE)
            == "<lisa-review>REJECT:execute</lisa-review>"
        )

    def test_custom_protocol(self) -> None:
        """Detector and composer follow whatever tokens the protocol carries."""
        protocol = SignalProtocol(
            phase_complete="[[done]]",
            review_approved="[[ok]]",
            review_reject_prefix="[[no:",
            review_close="]]",
        )
        detector = SignalDetector(protocol)
        assert detector.detect("[[done]]") == Signal.phase_complete()
        assert detector.detect("[[ok]]", Expect.REVIEW_VERDICT) == Signal.approved()
        signal = detector.detect("[[no:validate]]", Expect.REVIEW_VERDICT)
        assert signal is not None
        assert signal.kind == SignalKind.REVIEW_REJECTED
        assert signal.target == LisaPhase.VALIDATE

    def test_expect_for_phase(self) -> None:
        assert Expect.for_phase(LisaPhase.PLAN) == Expect.PHASE_COMPLETE
        assert Expect.for_phase(LisaPhase.CODE_REVIEW) == Expect.REVIEW_VERDICT
