"""
Monitoring Module
Exports for structured logging and error tracking
"""

from app.services.monitoring.logging import setup_logging, CorrelationJsonFormatter
from app.services.monitoring.error_tracking import init_sentry, set_operation_context, add_breadcrumb

__all__ = [
    "setup_logging",
    "CorrelationJsonFormatter",
    "init_sentry",
    "set_operation_context",
    "add_breadcrumb",
]
