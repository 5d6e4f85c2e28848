"""
Prompt Version API Router
Save and load prompt-factory prompt versions
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
import structlog

from app.database import get_db
from app.models.api_schemas import SavePromptVersionRequest
from app.routers.dependencies import require_db
from app.services.prompt_versions import PromptVersionManager

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/prompt-versions", tags=["prompt-versions"])


@router.post("")
async def save_prompt_version(
    request: SavePromptVersionRequest,
    db: Session = Depends(get_db)
):
    """
    Persist a new prompt version for a session (next version number).
    """
    db = require_db(db)

    version = PromptVersionManager(db).create_new_version(
        session_id=request.session_id,
        base_prompt=request.base_prompt,
        states=request.states,
        markdown_source=request.markdown_source,
        changes_summary=request.changes_summary
    )

    return {"prompt_version": version.to_dict()}


@router.get("")
async def list_prompt_versions(
    session_id: str = Query(..., description="Prompt-factory session ID"),
    db: Session = Depends(get_db)
):
    """
    List a session's versions, newest first.
    """
    db = require_db(db)
    versions = PromptVersionManager(db).list_versions(session_id)
    return {
        "total": len(versions),
        "versions": [v.to_dict() for v in versions]
    }


@router.get("/{version_id}")
async def load_prompt_version(
    version_id: int,
    db: Session = Depends(get_db)
):
    """
    Load a prompt version by ID.

    Raises:
        404: Version not found
    """
    db = require_db(db)

    version = PromptVersionManager(db).get_version(version_id)
    if not version:
        raise HTTPException(status_code=404, detail="Prompt version not found")

    return {"prompt_version": version.to_dict()}
