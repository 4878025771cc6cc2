"""
API Module for SupportDesk Chat.

FastAPI application with routes for:
- Customer chat sessions
- Staff login, queue and hand-off control
- Real-time WebSocket events
"""

from .main import create_app, app

__all__ = ["create_app", "app"]
