"""
Conversation and AI module for SupportDesk Chat.

This module handles:
- Conversation session storage
- Prompt construction
- AI response generation (OpenAI-compatible)
"""

from .conversation_store import ChatMessage, ConversationSession, RecordSessionStore, SessionStore
from .prompt_templates import PromptTemplates
from .responder import AIResponder, AIResponse, AIResponseError

__all__ = [
    "ChatMessage",
    "ConversationSession",
    "RecordSessionStore",
    "SessionStore",
    "PromptTemplates",
    "AIResponder",
    "AIResponse",
    "AIResponseError",
]
