"""
Dynamic Prompt Cache
Resolves an agent's full prompt, reusing the stored render while its cache key still matches
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.user_agent import UserAgent
from app.services.contact_variables import STANDARD_VARIABLES, VariableDefinition
from app.services.errors import AgentNotFound, MissingTemplate, ValidationFailed
from app.services.idempotency import canonical_json

logger = structlog.get_logger(__name__)

BACKGROUND_PLACEHOLDER = "{USER_BACKGROUND_SECTION}"
BACKGROUND_HEADING = "## Background about User"
NO_FIELDS_SELECTED_LINE = "- No specific contact information selected"
NO_VALID_FIELDS_LINE = "- No valid contact information selected"


def compute_cache_key(
    agent_id: str,
    selected_fields: Iterable[str],
    field_mappings: Optional[Dict[str, Any]]
) -> str:
    """
    Fingerprint of everything that affects an agent's rendered prompt.

    Field order does not matter; mappings are serialized with sorted keys.

    Example:
        compute_cache_key("A", ["phone_number", "first_name"], {})
        # Returns: "A-first_name,phone_number-{}"
    """
    fields_key = ",".join(sorted(selected_fields or []))
    mappings_key = canonical_json(field_mappings or {})
    return f"{agent_id}-{fields_key}-{mappings_key}"


def render_background_section(
    selected_fields: Sequence[str],
    field_mappings: Optional[Dict[str, Any]] = None,
    catalog: Sequence[VariableDefinition] = STANDARD_VARIABLES
) -> str:
    """
    Render the "Background about User" prompt section.

    One "- <Label>: {{<key>}}" line per selected field found in the catalog,
    in selection order. Unknown fields are dropped. A field selected more
    than once renders a single line, though repeats still change the cache
    key. field_mappings does not change the rendered text.
    """
    if not selected_fields:
        return f"{BACKGROUND_HEADING}\n{NO_FIELDS_SELECTED_LINE}"

    by_key = {variable.key: variable for variable in catalog}
    lines: List[str] = []
    seen = set()

    for field_key in selected_fields:
        variable = by_key.get(field_key)
        if variable is None or field_key in seen:
            continue
        seen.add(field_key)
        lines.append(f"- {variable.label}: {{{{{variable.key}}}}}")

    if not lines:
        return f"{BACKGROUND_HEADING}\n{NO_VALID_FIELDS_LINE}"

    return BACKGROUND_HEADING + "\n" + "\n".join(lines) + "\n"


@dataclass
class PromptResolution:
    prompt: str
    cached: bool
    cache_key: str


class PromptCacheResolver:
    """
    Produces the prompt for an agent, re-rendering only when the cache key changes.

    The stored dynamic_prompt is trusted only while agent.prompt_cache_key equals
    the key computed for the current request.
    """

    def __init__(self, db: Session):
        self.db = db

    def resolve(
        self,
        agent: UserAgent,
        selected_fields: Optional[Sequence[str]],
        field_mappings: Optional[Dict[str, Any]]
    ) -> PromptResolution:
        """
        Args:
            agent: Agent record (configured_prompt, dynamic_prompt, prompt_cache_key)
            selected_fields: Contact variable keys to expose
            field_mappings: CSV header mappings

        Returns:
            PromptResolution flagged cached=True when the stored render was reused

        Raises:
            MissingTemplate: configured_prompt is missing or has no placeholder
        """
        # Read before _store: a failed commit expires the instance
        agent_id = agent.id
        selected_fields = list(selected_fields or [])
        field_mappings = field_mappings or {}
        cache_key = compute_cache_key(agent_id, selected_fields, field_mappings)

        if agent.prompt_cache_key == cache_key and agent.dynamic_prompt:
            logger.info("prompt_cache_hit", agent_id=agent_id)
            return PromptResolution(prompt=agent.dynamic_prompt, cached=True, cache_key=cache_key)

        template = agent.configured_prompt
        if not template or not template.strip():
            raise MissingTemplate(
                "Agent configured_prompt is missing. Please reconfigure the agent.",
                details={"agent_id": agent_id}
            )
        if BACKGROUND_PLACEHOLDER not in template:
            raise MissingTemplate(
                f"Agent configured_prompt has no {BACKGROUND_PLACEHOLDER} placeholder",
                details={"agent_id": agent_id}
            )

        background = render_background_section(selected_fields, field_mappings)
        prompt = template.replace(BACKGROUND_PLACEHOLDER, background, 1)

        self._store(agent, agent_id, prompt, cache_key)

        logger.info(
            "prompt_rendered",
            agent_id=agent_id,
            field_count=len(selected_fields),
            rendered_length=len(prompt)
        )
        return PromptResolution(prompt=prompt, cached=False, cache_key=cache_key)

    def _store(self, agent: UserAgent, agent_id: str, prompt: str, cache_key: str) -> None:
        """Persist the render. Failure only costs the cache, so it is logged, not raised."""
        try:
            agent.dynamic_prompt = prompt
            agent.prompt_cache_key = cache_key
            agent.prompt_updated_at = datetime.now(timezone.utc)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("prompt_cache_store_failed", agent_id=agent_id, error=str(e))


class PromptBuildService:
    """
    Resolves an agent's prompt and pushes it to the voice platform's LLM config.

    The cache commit and the remote push are not transactional: a failed push
    is reported as llm_updated=False with llm_error set, and the cached render stays.
    """

    def __init__(self, db: Session, configuration_service):
        """
        Args:
            db: SQLAlchemy database session
            configuration_service: AgentConfigurationService (or anything with
                an async update_llm(user_id, agent_id, dynamic_prompt, integrations))
        """
        self.db = db
        self.resolver = PromptCacheResolver(db)
        self.configuration_service = configuration_service

    def load_agent(self, user_id: str, agent_id: str) -> UserAgent:
        agent = self.db.query(UserAgent).filter(
            UserAgent.id == agent_id,
            UserAgent.user_id == user_id
        ).first()

        if agent is None:
            raise AgentNotFound("Agent not found or access denied", details={"agent_id": agent_id})
        return agent

    async def build(
        self,
        user_id: str,
        agent_id: Optional[str],
        selected_fields: Optional[Sequence[str]] = None,
        field_mappings: Optional[Dict[str, Any]] = None
    ) -> dict:
        """
        Returns:
            {prompt, cached, cache_key, llm_updated, llm_error}

        Raises:
            ValidationFailed: agent_id missing
            AgentNotFound: agent absent or owned by another user
            MissingTemplate: agent template unusable
        """
        if not agent_id:
            raise ValidationFailed("Agent ID is required")

        agent = self.load_agent(user_id, agent_id)
        retell_llm_id = agent.retell_llm_id
        integrations = agent.integrations
        resolution = self.resolver.resolve(agent, selected_fields, field_mappings)

        llm_updated = False
        llm_error: Optional[str] = None

        if retell_llm_id:
            try:
                result = await self.configuration_service.update_llm(
                    user_id=user_id,
                    agent_id=agent_id,
                    dynamic_prompt=resolution.prompt,
                    integrations=integrations
                )
                if result.get("success"):
                    llm_updated = True
                else:
                    llm_error = result.get("error") or "Unknown error updating LLM"
            except Exception as e:
                # Partial success: the prompt is resolved and cached even if the push fails
                llm_error = f"Error updating voice LLM: {e}"

            if llm_error:
                logger.warning("prompt_push_failed", agent_id=agent_id, error=llm_error)
        else:
            llm_error = "Agent does not have a Retell LLM ID"
            logger.warning("prompt_push_skipped", agent_id=agent_id, reason="no_llm_id")

        return {
            "prompt": resolution.prompt,
            "cached": resolution.cached,
            "cache_key": resolution.cache_key,
            "llm_updated": llm_updated,
            "llm_error": llm_error,
        }
