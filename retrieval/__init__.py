"""
Retrieval Module for SupportDesk Chat.

Provides knowledge-base search used to ground AI replies.
"""

from .knowledge_base import KnowledgeBase, KnowledgeEntry

__all__ = [
    "KnowledgeBase",
    "KnowledgeEntry",
]
