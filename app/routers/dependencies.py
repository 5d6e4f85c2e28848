"""
Shared FastAPI dependencies
"""

from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException

from app import database
from app.services.idempotency import IdempotencyCoordinator
from app.services.retell_client import RetellClient, VoiceAgentOperations


def require_db(db):
    """Routers receive None from get_db when PostgreSQL is not configured."""
    if db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return db


async def get_user_id(x_user_id: str = Header(..., description="Authenticated user ID")) -> str:
    if not x_user_id.strip():
        raise HTTPException(status_code=401, detail="No user ID provided")
    return x_user_id


async def get_retell_client() -> AsyncIterator[RetellClient]:
    client = RetellClient.from_settings()
    try:
        yield client
    finally:
        await client.aclose()


def get_idempotency_coordinator() -> IdempotencyCoordinator:
    session_factory = database.get_session_factory()
    if session_factory is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return IdempotencyCoordinator.from_settings(session_factory)


def get_voice_operations(
    coordinator: IdempotencyCoordinator = Depends(get_idempotency_coordinator),
    client: RetellClient = Depends(get_retell_client)
) -> VoiceAgentOperations:
    """Deduplicated platform operations; 503 until the platform key is configured."""
    if not client.api_key:
        raise HTTPException(status_code=503, detail="Retell API key not configured")
    return VoiceAgentOperations(coordinator, client)
