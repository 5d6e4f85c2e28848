"""
Retell Voice Platform Client
HTTP client for the voice-agent platform plus the services that push agent configuration
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.user_agent import UserAgent
from app.services.errors import OperationTimeout
from app.services.idempotency import IdempotencyCoordinator, IdempotentOperation
from app.services.resilience import default_should_retry, retry_with_timeout

logger = structlog.get_logger(__name__)

DEFAULT_CAL_TIMEZONE = "America/New_York"


class RetellAPIError(Exception):
    """Non-2xx response from the voice platform."""

    def __init__(self, status_code: int, body: str, operation: str = "request"):
        self.status_code = status_code
        self.body = body
        self.operation = operation
        super().__init__(f"Retell {operation} returned {status_code}: {body}")


def retell_should_retry(error: BaseException) -> bool:
    """
    Retry policy for platform calls.

    Client errors other than 429 are permanent; everything else follows the
    default message-based policy.
    """
    if isinstance(error, RetellAPIError):
        if error.status_code == 429:
            return True
        if 400 <= error.status_code < 500:
            return False
    return default_should_retry(error)


def parse_retell_error(error_text: str, operation: str) -> str:
    """
    Turn a raw platform error body into a user-facing message.

    Category checks run first (Cal.com, phone number, agent/LLM, API key,
    voice, validation, rate limit); otherwise the body's message/error field
    is surfaced, otherwise a generic hint.
    """
    text = error_text or ""
    lowered = text.lower()

    if (
        "cal event type api" in lowered
        or "cal.com" in lowered
        or "cal_api_key" in lowered
        or "event_type_id" in lowered
        or "event type api" in lowered
        or ("403" in text and "forbidden" in lowered and "cal" in lowered)
    ):
        if "event type api" in lowered or ("403" in text and "forbidden" in lowered):
            return (
                "The Cal.com Event Type ID you entered doesn't exist or you don't have access to it. "
                "Please check your Cal.com dashboard and verify the correct Event Type ID."
            )
        if "unauthorized" in lowered or "invalid" in lowered or "api_key" in lowered:
            return "The Cal.com API key is invalid. Please check your Cal.com API key in the integrations settings."
        if "event_type" in lowered or "not found" in lowered:
            return (
                "The Cal.com Event Type ID you entered doesn't exist. "
                "Please verify the Event Type ID exists in your Cal.com account."
            )
        return "Cal.com integration error. Please verify your Cal.com API key and Event Type ID in the integrations settings."

    if "phone" in lowered or "number" in lowered:
        if "not found" in lowered:
            return "Phone number not found in Retell. Please try syncing your phone numbers or contact support."
        if "already" in lowered:
            return "Phone number is already being used by another agent. Please select a different phone number."

    if "agent" in lowered or "llm" in lowered:
        if "not found" in lowered:
            return "Agent configuration not found. Please try creating the agent again."
        if "invalid" in lowered:
            return "Invalid agent configuration. Please check your settings and try again."

    if "unauthorized" in lowered or "invalid key" in lowered:
        return "Invalid Retell API key. Please check your API key configuration."

    if "voice" in lowered:
        return "Invalid voice configuration. Please check your voice settings."

    if "validation" in lowered or "required" in lowered:
        return f"Invalid configuration for {operation}. Please check all required fields are filled correctly."

    if "rate limit" in lowered or "too many" in lowered:
        return "Rate limit exceeded. Please wait a moment and try again."

    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        parsed = None

    if isinstance(parsed, dict):
        detail = parsed.get("message") or parsed.get("error")
        if detail:
            return f"{operation} failed: {detail}"

    return f"{operation} failed. Please check your configuration and try again."


def validate_calcom_credentials(api_key: Optional[str], event_type_id: Any) -> Optional[str]:
    """
    Returns:
        Error message, or None when valid or when Cal.com is not configured
    """
    if not api_key or not event_type_id:
        return None

    if not isinstance(api_key, str) or len(api_key) < 10:
        return "Cal.com API key appears to be invalid. Please check the format."

    try:
        numeric_event_id = int(event_type_id)
    except (TypeError, ValueError):
        numeric_event_id = 0
    if numeric_event_id <= 0:
        return "Cal.com event type ID must be a valid positive number."

    return None


def _calcom_credentials(integrations: Dict[str, Any]) -> tuple:
    nested = integrations.get("calcom") or {}
    api_key = nested.get("apiKey") or integrations.get("calApiKey") or integrations.get("calComApiKey")
    event_type_id = (
        nested.get("eventTypeId")
        or integrations.get("calEventTypeId")
        or integrations.get("calComEventTypeId")
    )
    return api_key, event_type_id


def build_general_tools(integrations: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Build the LLM tool list from an agent's integration config.

    Accepts both the nested format ({"transfer": {...}, "calcom": {...}}) and
    the legacy flat keys (enableCallTransfer, calComApiKey, ...).

    Raises:
        ValueError: Cal.com is enabled with a non-numeric event type ID
            (run validate_calcom_credentials first)
    """
    tools: List[Dict[str, Any]] = [
        {"type": "end_call", "name": "end_call", "description": ""}
    ]

    nested_transfer = integrations.get("transfer") or {}
    flat_transfer_enabled = (
        (integrations.get("enableCallTransfer") or integrations.get("enableTransfer"))
        and integrations.get("transferPhoneNumber")
    )
    nested_transfer_enabled = nested_transfer.get("enabled") and nested_transfer.get("phoneNumber")
    if nested_transfer_enabled or flat_transfer_enabled:
        tools.append({
            "type": "transfer_call",
            "name": "transfer_call",
            "transfer_destination": {
                "type": "predefined",
                "number": nested_transfer.get("phoneNumber") or integrations.get("transferPhoneNumber"),
            },
            "transfer_option": {"type": "cold_transfer"},
        })

    nested_cal = integrations.get("calcom") or {}
    api_key, event_type_raw = _calcom_credentials(integrations)
    flat_cal_enabled = (
        (integrations.get("enableCalIntegration") or integrations.get("enableCalCom"))
        and api_key and event_type_raw
    )
    nested_cal_enabled = nested_cal.get("enabled") and nested_cal.get("apiKey") and nested_cal.get("eventTypeId")
    if nested_cal_enabled or flat_cal_enabled:
        event_type_id = int(event_type_raw)
        cal_timezone = (
            nested_cal.get("timezone")
            or integrations.get("calTimezone")
            or integrations.get("calComTimezone")
            or DEFAULT_CAL_TIMEZONE
        )
        logger.info(
            "calcom_tools_added",
            event_type_id=event_type_id,
            timezone=cal_timezone,
            api_key=f"{str(api_key)[:6]}..."
        )
        tools.append({
            "type": "check_availability_cal",
            "name": "check_availability_cal",
            "description": (
                "When users ask for availability, or want to schedule an appointment, "
                "check the calendar and provide available slots."
            ),
            "cal_api_key": api_key,
            "event_type_id": event_type_id,
            "timezone": cal_timezone,
        })
        tools.append({
            "type": "book_appointment_cal",
            "name": "book_appointment_cal",
            "description": (
                "When users ask to book an appointment, or after users select a time slot "
                "from the calendar book it on the calendar."
            ),
            "cal_api_key": api_key,
            "event_type_id": event_type_id,
            "timezone": cal_timezone,
        })

    return tools


class RetellClient:
    """
    Thin async client for the voice-agent platform REST API.

    Usage:
        async with RetellClient.from_settings() as client:
            await client.update_retell_llm("llm_123", {"general_prompt": "..."})
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.retellai.com",
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    @classmethod
    def from_settings(cls) -> "RetellClient":
        return cls(
            api_key=settings.retell_api_key,
            base_url=settings.retell_base_url,
            timeout=settings.timeout_api_ms / 1000,
        )

    async def __aenter__(self) -> "RetellClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, body: Optional[dict], operation: str) -> dict:
        response = await self._client.request(
            method,
            f"{self.base_url}{path}",
            json=body,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

        if response.status_code >= 400:
            logger.warning(
                "retell_request_failed",
                operation=operation,
                status_code=response.status_code,
                body=response.text[:500]
            )
            raise RetellAPIError(response.status_code, response.text, operation)

        logger.info("retell_request_succeeded", operation=operation, status_code=response.status_code)
        return response.json() if response.content else {}

    async def update_retell_llm(self, llm_id: str, body: dict) -> dict:
        return await self._request("PATCH", f"/update-retell-llm/{llm_id}", body, "update_retell_llm")

    async def create_agent(self, body: dict) -> dict:
        return await self._request("POST", "/create-agent", body, "create_agent")

    async def update_agent(self, agent_id: str, body: dict) -> dict:
        return await self._request("PATCH", f"/update-agent/{agent_id}", body, "update_agent")

    async def create_phone_call(self, body: dict) -> dict:
        return await self._request("POST", "/v2/create-phone-call", body, "create_phone_call")


async def call_platform(fn):
    """Per-attempt timeout plus retry, configured from settings."""
    return await retry_with_timeout(
        fn,
        max_retries=settings.retry_max_retries,
        timeout_ms=settings.timeout_api_ms,
        retry_delay_ms=settings.retry_delay_ms,
        should_retry=retell_should_retry,
    )


class AgentConfigurationService:
    """
    Pushes a rendered prompt (and optionally tools) to an agent's platform LLM.

    Contract: update_llm() returns {"success": True, "llm_data": ...} or
    {"success": False, "error": "..."}; expected failures never raise.
    """

    def __init__(self, db: Session, client: RetellClient):
        self.db = db
        self.client = client

    async def update_llm(
        self,
        user_id: str,
        agent_id: Optional[str],
        dynamic_prompt: Optional[str],
        integrations: Optional[Dict[str, Any]] = None
    ) -> dict:
        """
        Args:
            user_id: Owner of the agent
            agent_id: UserAgent ID
            dynamic_prompt: Full prompt text
            integrations: Tool config; None keeps the LLM's existing tools

        Returns:
            {success, error?, llm_data?}
        """
        if not agent_id or not dynamic_prompt:
            return {"success": False, "error": "Agent ID and dynamic prompt are required"}

        agent = self.db.query(UserAgent).filter(
            UserAgent.id == agent_id,
            UserAgent.user_id == user_id
        ).first()
        if agent is None:
            return {"success": False, "error": "Agent not found or access denied"}

        if not agent.retell_llm_id:
            return {"success": False, "error": "Agent does not have a Retell LLM ID"}

        if not self.client.api_key:
            return {"success": False, "error": "Retell API key not configured"}

        body: Dict[str, Any] = {"general_prompt": dynamic_prompt}

        if integrations is not None:
            api_key, event_type_id = _calcom_credentials(integrations)
            calcom_error = validate_calcom_credentials(api_key, event_type_id)
            if calcom_error:
                return {"success": False, "error": calcom_error}

            body["general_tools"] = build_general_tools(integrations)
            logger.info("llm_tools_updating", agent_id=agent_id, tool_count=len(body["general_tools"]))
        else:
            logger.info("llm_tools_preserved", agent_id=agent_id)

        llm_id = agent.retell_llm_id
        try:
            llm_data = await call_platform(lambda: self.client.update_retell_llm(llm_id, body))
        except RetellAPIError as e:
            return {"success": False, "error": parse_retell_error(e.body, "LLM update")}
        except OperationTimeout as e:
            return {"success": False, "error": str(e)}
        except httpx.HTTPError as e:
            logger.error("llm_update_transport_failed", agent_id=agent_id, error=str(e))
            return {"success": False, "error": f"LLM update failed: {e}"}

        try:
            agent.prompt_updated_at = datetime.now(timezone.utc)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("prompt_timestamp_update_failed", agent_id=agent_id, error=str(e))

        logger.info("llm_updated", agent_id=agent_id, llm_id=llm_id)
        return {"success": True, "llm_data": llm_data}


class VoiceAgentOperations:
    """
    Side-effecting platform operations, each deduplicated by the idempotency
    coordinator and executed with per-attempt timeout and retry.
    """

    def __init__(self, coordinator: IdempotencyCoordinator, client: RetellClient):
        self.coordinator = coordinator
        self.client = client

    async def create_agent(self, agent_data: dict) -> dict:
        return await self.coordinator.execute_operation(
            IdempotentOperation.CREATE_AGENT,
            lambda: call_platform(lambda: self.client.create_agent(agent_data)),
            agent_data,
        )

    async def start_call(self, call_data: dict) -> dict:
        return await self.coordinator.execute_operation(
            IdempotentOperation.START_CALL,
            lambda: call_platform(lambda: self.client.create_phone_call(call_data)),
            call_data,
        )

    async def update_agent(self, agent_id: str, updates: dict) -> dict:
        return await self.coordinator.execute_operation(
            IdempotentOperation.UPDATE_AGENT,
            lambda: call_platform(lambda: self.client.update_agent(agent_id, updates)),
            {"agent_id": agent_id, "updates": updates},
        )
