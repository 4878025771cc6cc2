"""Tests for implicit escalation triggers."""

import pytest

from handoff import EscalationDetector, EscalationTrigger


@pytest.fixture
def detector():
    return EscalationDetector(confidence_threshold=0.5, confidence_streak=2)


class TestKeywords:
    @pytest.mark.parametrize("text", [
        "Can I talk to a human please?",
        "I want a REAL PERSON",
        "connect me with a live agent",
    ])
    def test_handoff_phrases(self, detector, text):
        assert detector.check_message(text) == EscalationTrigger.USER_REQUEST

    def test_ordinary_question(self, detector):
        assert detector.check_message("How do I reset my password?") is None


class TestConfidence:
    def test_streak_triggers_escalation(self, detector):
        assert detector.record_confidence("s1", 0.3) is None
        assert detector.record_confidence("s1", 0.2) == EscalationTrigger.LOW_CONFIDENCE

    def test_confident_reply_resets_streak(self, detector):
        detector.record_confidence("s1", 0.3)
        detector.record_confidence("s1", 0.9)
        assert detector.record_confidence("s1", 0.3) is None

    def test_sessions_are_tracked_separately(self, detector):
        detector.record_confidence("s1", 0.3)
        assert detector.record_confidence("s2", 0.3) is None

    def test_reset(self, detector):
        detector.record_confidence("s1", 0.3)
        detector.reset("s1")
        assert detector.record_confidence("s1", 0.3) is None
