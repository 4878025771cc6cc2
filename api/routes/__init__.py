"""
API Routes for SupportDesk Chat.
"""

from . import chat, feedback, knowledge, realtime, staff

__all__ = ["chat", "feedback", "knowledge", "realtime", "staff"]
