"""
Agent API Router
Creates and updates platform agents and pushes prompts and tools to their LLM
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import structlog

from app.database import get_db
from app.middleware import get_correlation_id
from app.models.api_schemas import (
    CreateAgentRequest,
    UpdateAgentRequest,
    UpdateLLMRequest,
    UpdateLLMResponse,
)
from app.routers.dependencies import get_retell_client, get_user_id, get_voice_operations, require_db
from app.services.monitoring.error_tracking import set_operation_context
from app.services.retell_client import AgentConfigurationService, RetellClient, VoiceAgentOperations

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/agents", tags=["agents"])


@router.post("/{agent_id}/llm", response_model=UpdateLLMResponse, response_model_exclude_none=True)
async def update_agent_llm(
    agent_id: str,
    request: UpdateLLMRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
    client: RetellClient = Depends(get_retell_client)
):
    """
    Update the agent's LLM prompt, and its tools when integrations are given.

    Always answers 200; failures are reported as {"success": false, "error": ...}.
    """
    db = require_db(db)
    set_operation_context("update_llm", agent_id=agent_id, correlation_id=get_correlation_id())

    service = AgentConfigurationService(db, client)
    result = await service.update_llm(
        user_id=user_id,
        agent_id=agent_id,
        dynamic_prompt=request.dynamic_prompt,
        integrations=request.integrations
    )

    logger.info("agent_llm_update_requested", agent_id=agent_id, success=result["success"])
    return result


@router.post("", status_code=201)
async def create_agent(
    request: CreateAgentRequest,
    user_id: str = Depends(get_user_id),
    operations: VoiceAgentOperations = Depends(get_voice_operations)
):
    """
    Create a voice agent on the platform.

    An identical definition submitted again within 10 minutes returns the
    agent created the first time instead of creating another one.
    """
    set_operation_context("retell_create_agent", correlation_id=get_correlation_id())

    agent_data = request.model_dump(exclude_none=True)
    agent = await operations.create_agent(agent_data)

    logger.info("agent_created", user_id=user_id, retell_agent_id=agent.get("agent_id"))
    return agent


@router.patch("/{agent_id}")
async def update_agent(
    agent_id: str,
    request: UpdateAgentRequest,
    user_id: str = Depends(get_user_id),
    operations: VoiceAgentOperations = Depends(get_voice_operations)
):
    """
    Update a platform agent's settings (voice, name, response engine, ...).

    Raises:
        400: No fields to update
    """
    updates = request.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")

    set_operation_context("retell_update_agent", agent_id=agent_id, correlation_id=get_correlation_id())

    agent = await operations.update_agent(agent_id, updates)

    logger.info("agent_updated", user_id=user_id, agent_id=agent_id, fields=sorted(updates))
    return agent
