"""
Middleware Module
Request correlation for API calls and the platform operations they trigger
"""

from app.middleware.correlation_id import CorrelationIdMiddleware, get_correlation_id

__all__ = ["CorrelationIdMiddleware", "get_correlation_id"]
