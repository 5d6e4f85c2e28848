"""
Database Models
"""

from app.models.idempotency_record import IdempotencyRecord, IdempotencyStatus
from app.models.user_agent import UserAgent
from app.models.prompt_version import PromptVersion

__all__ = [
    "IdempotencyRecord",
    "IdempotencyStatus",
    "UserAgent",
    "PromptVersion",
]
