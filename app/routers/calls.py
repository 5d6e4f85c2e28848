"""
Call API Router
Starts outbound calls through the idempotency coordinator
"""

from fastapi import APIRouter, Depends
import structlog

from app.middleware import get_correlation_id
from app.models.api_schemas import StartCallRequest
from app.routers.dependencies import get_user_id, get_voice_operations
from app.services.monitoring.error_tracking import set_operation_context
from app.services.retell_client import VoiceAgentOperations

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/calls", tags=["calls"])


@router.post("", status_code=201)
async def start_call(
    request: StartCallRequest,
    user_id: str = Depends(get_user_id),
    operations: VoiceAgentOperations = Depends(get_voice_operations)
):
    """
    Dial an outbound call.

    The same call requested again within a minute returns the first call
    instead of dialing twice. If that first attempt failed, the repeat is
    rejected with 409 rather than redialed; submit it again after the window.
    """
    set_operation_context(
        "retell_start_call",
        agent_id=request.override_agent_id,
        correlation_id=get_correlation_id()
    )

    call = await operations.start_call(request.model_dump(exclude_none=True))

    logger.info(
        "call_started",
        user_id=user_id,
        call_id=call.get("call_id") if call else None,
        to_number=request.to_number
    )
    return call
