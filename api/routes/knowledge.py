"""
Knowledge API Routes for SupportDesk Chat.

Staff search the support articles the assistant draws on; admins add,
replace and remove them.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from handoff import StaffMember
from retrieval.knowledge_base import KnowledgeEntry

from ..middleware.auth import get_current_staff, require_role
from ..services import get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/knowledge", tags=["knowledge"])


class ArticleRequest(BaseModel):
    id: Optional[str] = Field(default=None, max_length=256)
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1, max_length=20000)
    category: str = Field(default="", max_length=100)
    metadata: Dict[str, Any] = Field(default_factory=dict)


def _entry_record(entry: KnowledgeEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "title": entry.title,
        "content": entry.content,
        "category": entry.category,
        "score": entry.score,
    }


def _knowledge():
    knowledge = get_services().knowledge
    if not knowledge or not knowledge.enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Knowledge base is not configured",
        )
    return knowledge


@router.get("/search")
async def search_articles(
    q: str = Query(..., min_length=1, max_length=1000),
    category: Optional[str] = None,
    limit: int = Query(default=5, ge=1, le=20),
    staff: StaffMember = Depends(get_current_staff),
):
    entries = await _knowledge().search(q, limit=limit, category=category)
    return {"success": True, "data": [_entry_record(e) for e in entries]}


@router.put("/articles", status_code=status.HTTP_201_CREATED)
async def upsert_article(request: ArticleRequest, staff: StaffMember = Depends(require_role("admin"))):
    """Add an article, or replace the one with the same id."""
    entry = KnowledgeEntry(
        id=request.id or str(uuid.uuid4()),
        title=request.title,
        content=request.content,
        category=request.category,
        metadata=request.metadata,
    )
    await _knowledge().upsert(entry)
    logger.info(f"Knowledge article {entry.id} saved by {staff.email}")
    return {"success": True, "data": _entry_record(entry)}


@router.delete("/articles/{article_id}")
async def delete_article(article_id: str, staff: StaffMember = Depends(require_role("admin"))):
    await _knowledge().delete(article_id)
    logger.info(f"Knowledge article {article_id} removed by {staff.email}")
    return {"success": True, "message": "Article removed"}
