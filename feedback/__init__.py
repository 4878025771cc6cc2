"""
Customer feedback module for SupportDesk Chat.

- Per-message ratings (FeedbackStore.rate_message)
- End-of-chat session reviews (FeedbackStore.submit_session_feedback)
- Aggregates for staff (stats, learning_metrics)
"""

from .models import MessageRating, Rating, RatingCategory, SessionFeedback
from .store import DuplicateFeedback, FeedbackStore, MessageNotFound

__all__ = [
    "MessageRating", "Rating", "RatingCategory", "SessionFeedback",
    "DuplicateFeedback", "FeedbackStore", "MessageNotFound",
]
