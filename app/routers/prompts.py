"""
Prompt API Router
Builds agents' dynamic prompts and pushes them to the voice platform
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import structlog

from app.database import get_db
from app.middleware import get_correlation_id
from app.models.api_schemas import BuildPromptRequest, BuildPromptResponse
from app.routers.dependencies import get_retell_client, get_user_id, require_db
from app.services.monitoring.error_tracking import set_operation_context
from app.services.prompt_cache import PromptBuildService
from app.services.retell_client import AgentConfigurationService, RetellClient

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/prompts", tags=["prompts"])


@router.post("/build", response_model=BuildPromptResponse)
async def build_prompt(
    request: BuildPromptRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
    client: RetellClient = Depends(get_retell_client)
):
    """
    Build (or reuse) an agent's dynamic prompt and push it to the agent's LLM.

    A failed push still returns 200 with llm_updated=false and llm_error set:
    the prompt was resolved and cached even though the platform was not updated.
    """
    db = require_db(db)
    set_operation_context("build_prompt", agent_id=request.agent_id, correlation_id=get_correlation_id())

    service = PromptBuildService(db, AgentConfigurationService(db, client))
    result = await service.build(
        user_id=user_id,
        agent_id=request.agent_id,
        selected_fields=request.selected_fields,
        field_mappings=request.field_mappings
    )

    logger.info(
        "prompt_built",
        agent_id=request.agent_id,
        cached=result["cached"],
        llm_updated=result["llm_updated"]
    )
    return result
