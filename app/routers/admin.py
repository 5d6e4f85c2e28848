"""
Admin API Router
Operational endpoints for manual maintenance runs
"""

from fastapi import APIRouter, Depends
import structlog

from app.models.api_schemas import CleanupResponse
from app.routers.dependencies import get_idempotency_coordinator
from app.services.idempotency import IdempotencyCoordinator

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.post("/idempotency/cleanup", response_model=CleanupResponse)
async def trigger_idempotency_cleanup(
    coordinator: IdempotencyCoordinator = Depends(get_idempotency_coordinator)
):
    """
    Delete expired idempotency records now instead of waiting for the schedule.
    """
    deleted_count = coordinator.cleanup_expired()
    logger.info("manual_idempotency_cleanup", deleted_count=deleted_count)
    return {"deleted_count": deleted_count}
