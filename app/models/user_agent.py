"""
UserAgent Model
A customer's configured voice agent, including its cached dynamic prompt
"""

from sqlalchemy import Column, String, Text, DateTime, JSON, Index
from sqlalchemy.sql import func
from app.database import Base


class UserAgent(Base):
    """
    Voice agent owned by a user.

    Prompt cache fields:
    - configured_prompt: user-authored template with one {USER_BACKGROUND_SECTION} placeholder
    - dynamic_prompt: last rendered prompt
    - prompt_cache_key: key dynamic_prompt was rendered for; dynamic_prompt is only
      valid while this equals the key computed for the current request
    """
    __tablename__ = "user_agents"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=True)

    # Prompt cache state
    configured_prompt = Column(Text, nullable=True)
    dynamic_prompt = Column(Text, nullable=True)
    prompt_cache_key = Column(Text, nullable=True)
    prompt_updated_at = Column(DateTime(timezone=True), nullable=True)

    # Voice platform identifiers
    retell_agent_id = Column(String(128), nullable=True)
    retell_llm_id = Column(String(128), nullable=True)

    # Free-form configuration (integrations live under either key)
    customizations = Column(JSON, nullable=True)
    settings = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)

    __table_args__ = (
        Index('ix_user_agents_user_id_id', 'user_id', 'id'),
    )

    @property
    def integrations(self):
        """Integration config from customizations, falling back to settings."""
        for source in (self.customizations, self.settings):
            if source and source.get("integrations"):
                return source["integrations"]
        return None

    def __repr__(self):
        return f"<UserAgent(id='{self.id}', user_id='{self.user_id}', llm='{self.retell_llm_id}')>"
