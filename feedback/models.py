"""
Customer feedback models.

Per-message thumbs up/down ratings and one end-of-chat review per session,
stored as JSON-friendly records.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Rating(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class RatingCategory(str, Enum):
    ACCURACY = "accuracy"
    HELPFULNESS = "helpfulness"
    RESPONSE_TIME = "response_time"
    OTHER = "other"


# Scored 1-5 in every session review
REVIEW_CATEGORIES = ("responsiveness", "helpfulness", "accuracy", "overall")


@dataclass
class MessageRating:
    id: str
    message_id: str
    session_id: str
    rating: Rating
    feedback: Optional[str] = None
    category: Optional[RatingCategory] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "messageId": self.message_id,
            "sessionId": self.session_id,
            "rating": self.rating.value,
            "feedback": self.feedback,
            "category": self.category.value if self.category else None,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "MessageRating":
        return cls(
            id=record["id"],
            message_id=record["messageId"],
            session_id=record["sessionId"],
            rating=Rating(record["rating"]),
            feedback=record.get("feedback"),
            category=RatingCategory(record["category"]) if record.get("category") else None,
            timestamp=datetime.fromisoformat(record["timestamp"]),
        )


@dataclass
class SessionFeedback:
    """A customer's review of a whole chat."""
    id: str
    session_id: str
    overall_rating: int
    feedback: str
    categories: Dict[str, int]
    improvements: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "overallRating": self.overall_rating,
            "feedback": self.feedback,
            "categories": dict(self.categories),
            "improvements": list(self.improvements),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "SessionFeedback":
        return cls(
            id=record["id"],
            session_id=record["sessionId"],
            overall_rating=record["overallRating"],
            feedback=record["feedback"],
            categories=dict(record["categories"]),
            improvements=list(record.get("improvements") or []),
            timestamp=datetime.fromisoformat(record["timestamp"]),
        )
