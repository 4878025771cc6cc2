"""
Feedback API Routes for SupportDesk Chat.

Customers rate replies and review finished chats; staff read the
aggregates. A message or a session accepts one submission (409 after).
"""

import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from feedback import Rating, RatingCategory
from handoff import StaffMember

from ..middleware.auth import get_current_staff
from ..middleware.metrics import record_feedback
from ..services import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feedback", tags=["feedback"])

Score = Annotated[int, Field(ge=1, le=5)]


# ── Request Models ────────────────────────────────────────────────

class RateMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(..., alias="messageId")
    session_id: str = Field(..., alias="sessionId")
    rating: Rating
    feedback: Optional[str] = Field(default=None, max_length=2000)
    category: Optional[RatingCategory] = None


class ReviewScores(BaseModel):
    responsiveness: Score
    helpfulness: Score
    accuracy: Score
    overall: Score


class SessionFeedbackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    overall_rating: int = Field(..., ge=1, le=5, alias="overallRating")
    feedback: str = Field(..., min_length=1, max_length=4000)
    categories: ReviewScores
    improvements: Optional[List[str]] = None


# ── Endpoints ─────────────────────────────────────────────────────

@router.post("/message/rate")
async def rate_message(request: RateMessageRequest):
    rating = await get_services().feedback.rate_message(
        request.session_id,
        request.message_id,
        request.rating,
        feedback=request.feedback,
        category=request.category,
    )
    record_feedback("message", rating.rating.value)
    return {"success": True, "data": rating.to_record(), "message": "Message rated successfully"}


@router.post("/session/feedback")
async def submit_session_feedback(request: SessionFeedbackRequest):
    review = await get_services().feedback.submit_session_feedback(
        request.session_id,
        request.overall_rating,
        request.feedback,
        request.categories.model_dump(),
        request.improvements,
    )
    record_feedback("session", str(review.overall_rating))
    return {"success": True, "data": review.to_record(), "message": "Feedback submitted successfully"}


@router.get("/message/{message_id}/rating")
async def get_message_rating(message_id: str):
    rating = await get_services().feedback.get_message_rating(message_id)
    return {"success": True, "data": rating.to_record() if rating else None}


@router.get("/session/{session_id}/ratings")
async def get_session_ratings(session_id: str):
    ratings = await get_services().feedback.session_ratings(session_id)
    return {"success": True, "data": [r.to_record() for r in ratings]}


@router.get("/session/{session_id}/feedback")
async def get_session_feedback(session_id: str):
    review = await get_services().feedback.get_session_feedback(session_id)
    return {"success": True, "data": review.to_record() if review else None}


@router.get("/analytics/metrics")
async def learning_metrics(staff: StaffMember = Depends(get_current_staff)):
    """Satisfaction summary; staff only."""
    return {"success": True, "data": await get_services().feedback.learning_metrics()}


@router.get("/analytics/stats")
async def feedback_stats(staff: StaffMember = Depends(get_current_staff)):
    return {"success": True, "data": await get_services().feedback.stats()}
