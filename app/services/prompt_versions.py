"""
PromptVersionManager Service
Manages prompt version lifecycle: create, load, list
"""

from typing import Any, List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.prompt_version import PromptVersion
from app.services.errors import ValidationFailed

logger = structlog.get_logger(__name__)

DEFAULT_CHANGES_SUMMARY = "Manual edit via markdown source editor"


class PromptVersionManager:
    """
    Manages numbered prompt versions per prompt-factory session.

    Versions are immutable: every edit creates version max+1 for the session.
    """

    def __init__(self, db: Session):
        """
        Initialize manager with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def create_new_version(
        self,
        session_id: str,
        base_prompt: str,
        states: List[Any],
        markdown_source: Optional[str] = None,
        changes_summary: str = DEFAULT_CHANGES_SUMMARY
    ) -> PromptVersion:
        """
        Create the next version for a session (copy-on-edit pattern).

        Args:
            session_id: Prompt-factory session ID
            base_prompt: System/identity prompt
            states: Conversation states
            markdown_source: Optional markdown the version was edited from
            changes_summary: What changed, why

        Returns:
            Created PromptVersion

        Raises:
            ValidationFailed: session_id/base_prompt missing or states not a list

        Example:
            manager = PromptVersionManager(db)
            version = manager.create_new_version(
                session_id='b2c1...',
                base_prompt='You are a friendly real-estate assistant.',
                states=[{'name': 'warm_intro'}]
            )
        """
        if not session_id or not base_prompt or not isinstance(states, list):
            raise ValidationFailed("session_id, base_prompt, and states are required")

        highest = self.db.query(func.max(PromptVersion.version_number)).filter(
            PromptVersion.session_id == session_id
        ).scalar()

        next_version = (highest or 0) + 1

        version = PromptVersion(
            session_id=session_id,
            version_number=next_version,
            base_prompt=base_prompt,
            states=states,
            markdown_source=markdown_source,
            generation_context={
                "changes_summary": changes_summary,
                "progress_events": None,
                "rag_contexts": None,
            },
        )

        self.db.add(version)
        self.db.commit()
        self.db.refresh(version)

        logger.info(
            "prompt_version_created",
            session_id=session_id,
            version_number=next_version,
            prompt_version_id=version.id
        )

        return version

    def get_version(self, version_id: int) -> Optional[PromptVersion]:
        """
        Load a prompt version by ID.

        Returns:
            PromptVersion or None if it doesn't exist
        """
        version = self.db.query(PromptVersion).filter(PromptVersion.id == version_id).first()

        if not version:
            logger.warning("prompt_version_not_found", prompt_version_id=version_id)
            return None

        logger.debug(
            "prompt_version_loaded",
            prompt_version_id=version_id,
            session_id=version.session_id,
            version_number=version.version_number
        )
        return version

    def get_latest_version(self, session_id: str) -> Optional[PromptVersion]:
        return self.db.query(PromptVersion).filter(
            PromptVersion.session_id == session_id
        ).order_by(PromptVersion.version_number.desc()).first()

    def list_versions(self, session_id: str) -> List[PromptVersion]:
        """
        List all versions for a session, newest first.
        """
        versions = self.db.query(PromptVersion).filter(
            PromptVersion.session_id == session_id
        ).order_by(PromptVersion.version_number.desc()).all()

        logger.debug("prompt_versions_listed", session_id=session_id, count=len(versions))

        return versions
