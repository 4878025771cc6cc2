"""
Escalation triggers for SupportDesk Chat.

Decides when an AI-handled conversation should ask for a human.
"""

import logging
from enum import Enum
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class EscalationTrigger(Enum):
    """Reasons for handoff to a human agent."""
    USER_REQUEST = "user_request"
    LOW_CONFIDENCE = "low_confidence"
    AI_FAILURE = "ai_failure"
    MANUAL = "manual"


class EscalationDetector:
    """
    Implicit escalation checks.

    Trigger conditions:
    1. Customer explicitly asks for a person
    2. N consecutive AI responses below the confidence threshold
    """

    HANDOFF_KEYWORDS = {
        "talk to agent", "talk to an agent", "talk to human", "talk to a human",
        "speak to agent", "speak to a human", "speak to someone", "real person",
        "human agent", "live agent", "transfer to agent", "customer service representative",
        "talk to a person", "talk to someone",
    }

    def __init__(self, confidence_threshold: float = 0.4, confidence_streak: int = 3):
        self.confidence_threshold = confidence_threshold
        self.confidence_streak = confidence_streak
        self._low_confidence_counts: Dict[str, int] = {}

    def check_message(self, text: str) -> Optional[EscalationTrigger]:
        message_lower = text.lower()
        if any(kw in message_lower for kw in self.HANDOFF_KEYWORDS):
            return EscalationTrigger.USER_REQUEST
        return None

    def record_confidence(self, session_id: str, confidence: float) -> Optional[EscalationTrigger]:
        if confidence < self.confidence_threshold:
            self._low_confidence_counts[session_id] = (
                self._low_confidence_counts.get(session_id, 0) + 1
            )
            if self._low_confidence_counts[session_id] >= self.confidence_streak:
                logger.info(f"Low-confidence streak reached for {session_id}")
                return EscalationTrigger.LOW_CONFIDENCE
        else:
            self._low_confidence_counts[session_id] = 0
        return None

    def reset(self, session_id: str):
        self._low_confidence_counts.pop(session_id, None)
