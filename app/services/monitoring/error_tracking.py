"""
Sentry Error Tracking
Provides error tracking with operation context for production debugging
"""

import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

logger = logging.getLogger(__name__)


def init_sentry() -> None:
    """
    Initialize Sentry SDK with FastAPI integration.

    If SENTRY_DSN is not configured, logs warning and returns (disabled).
    This allows graceful degradation in development environments.
    """
    from app.config import settings

    if settings.sentry_dsn is None:
        logger.warning("Sentry DSN not configured - error tracking disabled")
        return

    try:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.sentry_environment or settings.environment,
            traces_sample_rate=0.1,  # 10% of requests traced
            integrations=[
                FastApiIntegration(),
            ],
        )

        logger.info(
            "Sentry initialized",
            extra={
                "environment": settings.sentry_environment or settings.environment,
                "traces_sample_rate": 0.1,
            }
        )
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def set_operation_context(
    operation: str,
    agent_id: Optional[str] = None,
    correlation_id: Optional[str] = None
) -> None:
    """
    Set Sentry context for the operation being served.

    Args:
        operation: Logical operation (e.g., "build_prompt", "retell_start_call")
        agent_id: Agent the operation targets, if any
        correlation_id: Optional correlation ID for request tracking
    """
    sentry_sdk.set_context("operation", {
        "operation": operation,
        "agent_id": agent_id,
        "correlation_id": correlation_id or "none"
    })
    sentry_sdk.set_tag("operation", operation)

    if agent_id:
        sentry_sdk.set_tag("agent_id", agent_id)
    if correlation_id:
        sentry_sdk.set_tag("correlation_id", correlation_id)


def add_breadcrumb(
    category: str,
    message: str,
    level: str = "info",
    data: Optional[dict] = None
) -> None:
    """
    Add breadcrumb to Sentry for the request trail.

    No-op until init_sentry() has configured a client.

    Args:
        category: Breadcrumb category (e.g., "idempotency", "prompt_cache")
        message: Human-readable message
        level: Severity level ("debug", "info", "warning", "error")
        data: Additional structured data
    """
    sentry_sdk.add_breadcrumb(
        category=category,
        message=message,
        level=level,
        data=data or {}
    )
