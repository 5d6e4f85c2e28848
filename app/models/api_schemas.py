"""
Pydantic schemas for prompt, agent and admin endpoints
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class BuildPromptRequest(BaseModel):
    """
    Request to build (or reuse) an agent's dynamic prompt
    """
    agent_id: Optional[str] = Field(None, description="UserAgent ID")
    selected_fields: List[str] = Field(default_factory=list, description="Contact variable keys to expose")
    field_mappings: Dict[str, Any] = Field(default_factory=dict, description="CSV header to variable mappings")


class BuildPromptResponse(BaseModel):
    """
    Prompt build result; llm_updated=False with llm_error set is a partial success
    """
    prompt: str
    cached: bool
    cache_key: str
    llm_updated: bool
    llm_error: Optional[str] = None


class UpdateLLMRequest(BaseModel):
    """
    Push a rendered prompt (and optionally integrations/tools) to the voice platform
    """
    dynamic_prompt: Optional[str] = Field(None, description="Full prompt text")
    integrations: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Integration config; omit to keep the agent's existing tools"
    )


class UpdateLLMResponse(BaseModel):
    """
    Mirrors the configuration endpoint contract: { success, error? }
    """
    success: bool
    error: Optional[str] = None
    llm_data: Optional[Dict[str, Any]] = None


class SavePromptVersionRequest(BaseModel):
    """
    New prompt version for a prompt-factory session
    """
    session_id: str = Field(..., description="Prompt-factory session ID")
    base_prompt: str = Field(..., description="System/identity prompt")
    states: List[Any] = Field(..., description="Conversation states")
    markdown_source: Optional[str] = None
    changes_summary: str = "Manual edit via markdown source editor"


class CleanupResponse(BaseModel):
    """
    Result of an idempotency cleanup run
    """
    deleted_count: int


class CreateAgentRequest(BaseModel):
    """
    Voice agent definition forwarded to the platform's create-agent endpoint
    """
    response_engine: Dict[str, Any] = Field(..., description="e.g. {'type': 'retell-llm', 'llm_id': '...'}")
    voice_id: str = Field(..., description="Platform voice ID")
    agent_name: Optional[str] = None
    language: Optional[str] = None
    webhook_url: Optional[str] = None


class UpdateAgentRequest(BaseModel):
    """
    Partial agent update; only the fields that are set are sent
    """
    agent_name: Optional[str] = None
    voice_id: Optional[str] = None
    language: Optional[str] = None
    webhook_url: Optional[str] = None
    response_engine: Optional[Dict[str, Any]] = None


class StartCallRequest(BaseModel):
    """
    Outbound call; identical requests inside the dedup window dial once
    """
    from_number: str = Field(..., description="E.164 caller number owned on the platform")
    to_number: str = Field(..., description="E.164 number to dial")
    override_agent_id: Optional[str] = None
    retell_llm_dynamic_variables: Optional[Dict[str, str]] = Field(
        default=None,
        description="Values for {{key}} contact variables in the agent prompt"
    )
    metadata: Optional[Dict[str, Any]] = None


class ContactVariableSchema(BaseModel):
    key: str
    label: str
    category: str
    required: bool


class ContactVariableCatalogResponse(BaseModel):
    """
    Standard contact variables grouped by category
    """
    categories: Dict[str, List[ContactVariableSchema]]
    required: List[str]


class MatchHeadersRequest(BaseModel):
    headers: List[str] = Field(..., description="CSV column headers")


class MatchHeadersResponse(BaseModel):
    """
    Suggested header -> variable mapping; unmatched headers map to None
    """
    mappings: Dict[str, Optional[ContactVariableSchema]]
    missing_required: List[str]
