"""
Feedback Store for SupportDesk Chat.

Customers rate individual replies and review a chat once it is over. Each
message and each session takes at most one submission. The aggregates feed
the staff analytics view.
"""

import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from database.store import RecordStore
from handoff.errors import Conflict, NotFound
from handoff.locks import KeyedLocks
from llm.conversation_store import RecordSessionStore

from .models import REVIEW_CATEGORIES, MessageRating, Rating, RatingCategory, SessionFeedback

logger = logging.getLogger(__name__)

RATINGS_NAMESPACE = "message_ratings"
REVIEWS_NAMESPACE = "session_feedback"

LOW_SCORE = 3
MAX_COMMON_ISSUES = 5
MAX_IMPROVEMENT_AREAS = 10

FEEDBACK_KEYWORDS = [
    "slow", "fast", "quick", "response", "answer", "help", "support", "accurate",
    "wrong", "incorrect", "helpful", "useless", "friendly", "rude", "polite",
    "confusing", "clear", "understand", "knowledge",
]


class DuplicateFeedback(Conflict):
    """Feedback has already been submitted."""
    code = "duplicate_feedback"


class MessageNotFound(NotFound):
    """Message not found."""
    code = "message_not_found"


def extract_keywords(text: str) -> List[str]:
    """FEEDBACK_KEYWORDS that appear inside any word of `text`."""
    words = text.lower().split()
    return [k for k in FEEDBACK_KEYWORDS if any(k in word for word in words)]


class FeedbackStore:
    """Message ratings and session reviews on top of a RecordStore."""

    def __init__(
        self,
        store: RecordStore,
        sessions: RecordSessionStore,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._store = store
        self._sessions = sessions
        self._clock = clock
        self._locks = KeyedLocks()

    # ── Message ratings ────────────────────────────────────────────

    async def rate_message(
        self,
        session_id: str,
        message_id: str,
        rating: Rating,
        feedback: Optional[str] = None,
        category: Optional[RatingCategory] = None,
    ) -> MessageRating:
        """Rate one message of a session; a message can be rated once."""
        session = await self._sessions.require_session(session_id)
        if not any(m.id == message_id for m in session.messages):
            raise MessageNotFound(f"Message {message_id} not found in session {session_id}")

        async with self._locks.hold(f"message:{message_id}"):
            if await self._store.get(RATINGS_NAMESPACE, message_id):
                raise DuplicateFeedback("Message has already been rated")
            result = MessageRating(
                id=str(uuid.uuid4()),
                message_id=message_id,
                session_id=session_id,
                rating=Rating(rating),
                feedback=feedback,
                category=RatingCategory(category) if category else None,
                timestamp=self._clock(),
            )
            await self._store.put(RATINGS_NAMESPACE, message_id, result.to_record())

        logger.info(f"Message rated: {result.rating.value} for message {message_id}")
        return result

    async def get_message_rating(self, message_id: str) -> Optional[MessageRating]:
        record = await self._store.get(RATINGS_NAMESPACE, message_id)
        return MessageRating.from_record(record) if record else None

    async def all_ratings(self) -> List[MessageRating]:
        records = await self._store.scan(RATINGS_NAMESPACE)
        return sorted((MessageRating.from_record(r) for r in records), key=lambda r: r.timestamp)

    async def session_ratings(self, session_id: str) -> List[MessageRating]:
        return [r for r in await self.all_ratings() if r.session_id == session_id]

    # ── Session reviews ────────────────────────────────────────────

    async def submit_session_feedback(
        self,
        session_id: str,
        overall_rating: int,
        feedback: str,
        categories: Dict[str, int],
        improvements: Optional[List[str]] = None,
    ) -> SessionFeedback:
        """Record the end-of-chat review; a session can be reviewed once."""
        await self._sessions.require_session(session_id)
        missing = [c for c in REVIEW_CATEGORIES if c not in categories]
        if missing:
            raise ValueError(f"Missing review categories: {', '.join(missing)}")

        async with self._locks.hold(f"session:{session_id}"):
            if await self._store.get(REVIEWS_NAMESPACE, session_id):
                raise DuplicateFeedback("Feedback has already been submitted for this session")
            result = SessionFeedback(
                id=str(uuid.uuid4()),
                session_id=session_id,
                overall_rating=overall_rating,
                feedback=feedback,
                categories={c: categories[c] for c in REVIEW_CATEGORIES},
                improvements=list(improvements or []),
                timestamp=self._clock(),
            )
            await self._store.put(REVIEWS_NAMESPACE, session_id, result.to_record())

        logger.info(f"Session feedback submitted: {overall_rating}/5 for session {session_id}")
        return result

    async def get_session_feedback(self, session_id: str) -> Optional[SessionFeedback]:
        record = await self._store.get(REVIEWS_NAMESPACE, session_id)
        return SessionFeedback.from_record(record) if record else None

    async def all_session_feedback(self) -> List[SessionFeedback]:
        records = await self._store.scan(REVIEWS_NAMESPACE)
        return sorted((SessionFeedback.from_record(r) for r in records), key=lambda f: f.timestamp)

    # ── Aggregates ─────────────────────────────────────────────────

    async def stats(self) -> Dict[str, int]:
        ratings = await self.all_ratings()
        reviews = await self.all_session_feedback()
        return {
            "totalMessageRatings": len(ratings),
            "totalSessionFeedbacks": len(reviews),
            "positiveRatings": sum(1 for r in ratings if r.rating == Rating.POSITIVE),
            "negativeRatings": sum(1 for r in ratings if r.rating == Rating.NEGATIVE),
        }

    async def learning_metrics(self) -> Dict[str, Any]:
        """
        Satisfaction summary for staff.

        responseAccuracy is the share of positive message ratings and
        userSatisfaction the average review score, both as percentages.
        """
        ratings = await self.all_ratings()
        reviews = await self.all_session_feedback()

        positive = sum(1 for r in ratings if r.rating == Rating.POSITIVE)
        negative = len(ratings) - positive
        average = sum(f.overall_rating for f in reviews) / len(reviews) if reviews else 0.0

        return {
            "totalRatings": len(ratings),
            "positiveRatings": positive,
            "negativeRatings": negative,
            "averageSessionRating": round(average, 2),
            "commonIssues": self._common_issues(ratings, reviews),
            "improvementAreas": self._improvement_areas(reviews),
            "responseAccuracy": round(positive / len(ratings) * 100, 1) if ratings else 0.0,
            "userSatisfaction": round(average / 5 * 100, 1),
        }

    @staticmethod
    def _common_issues(ratings: List[MessageRating], reviews: List[SessionFeedback]) -> List[Dict[str, Any]]:
        issues: Counter = Counter()
        for rating in ratings:
            if rating.rating == Rating.NEGATIVE and rating.category:
                issues[rating.category.value] += 1

        for review in reviews:
            if review.overall_rating > LOW_SCORE:
                continue
            scored = [(score, name) for name, score in review.categories.items() if name != "overall"]
            if scored:
                score, name = min(scored)
                if score <= LOW_SCORE:
                    issues[name] += 1

        return [
            {"category": category, "count": count}
            for category, count in issues.most_common(MAX_COMMON_ISSUES)
        ]

    @staticmethod
    def _improvement_areas(reviews: List[SessionFeedback]) -> List[str]:
        areas: Dict[str, None] = {}
        for review in reviews:
            for improvement in review.improvements:
                areas.setdefault(improvement)
            if review.overall_rating <= LOW_SCORE and review.feedback:
                for keyword in extract_keywords(review.feedback):
                    areas.setdefault(keyword)
        return list(areas)[:MAX_IMPROVEMENT_AREAS]
