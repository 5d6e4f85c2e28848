"""
PromptVersion Model
Stores numbered prompt versions per prompt-factory session
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, CheckConstraint, Index, UniqueConstraint
from sqlalchemy.sql import func
from app.database import Base


class PromptVersion(Base):
    """
    Immutable prompt version.

    Organization:
    - session_id: prompt-factory session the version belongs to
    - version_number: auto-incremented per session (1, 2, 3, ...)

    Edits never modify an existing row; a new version is created instead.
    """
    __tablename__ = "prompt_versions"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True)

    # Organization
    session_id = Column(String(64), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)

    # Content
    base_prompt = Column(Text, nullable=False)  # System/identity prompt
    states = Column(JSON, nullable=False)  # Conversation states, e.g. [warm_intro, schedule_meet]
    markdown_source = Column(Text, nullable=True)
    generation_context = Column(JSON, nullable=True)  # changes_summary and generation inputs

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('version_number > 0', name='version_number_positive'),
        UniqueConstraint('session_id', 'version_number', name='uq_prompt_versions_session_version'),
        Index('ix_prompt_versions_created_at', 'created_at'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "version_number": self.version_number,
            "base_prompt": self.base_prompt,
            "states": self.states,
            "markdown_source": self.markdown_source,
            "generation_context": self.generation_context,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<PromptVersion(session='{self.session_id}' v{self.version_number})>"
