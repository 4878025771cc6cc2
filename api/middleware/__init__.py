"""
API Middleware.
"""

from .auth import get_current_staff, require_role
from .metrics import MetricsMiddleware, metrics_endpoint
from .rate_limit import RateLimitMiddleware

__all__ = [
    "get_current_staff",
    "require_role",
    "MetricsMiddleware",
    "metrics_endpoint",
    "RateLimitMiddleware",
]
