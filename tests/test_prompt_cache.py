"""
Tests for the dynamic prompt cache and prompt build service

Tests cover:
- Cache key determinism (field order, mapping key order)
- Background section rendering
- Cache hit / miss / invalidation
- Database outage while storing a render
- Template errors
- Prompt build: ownership, push to voice LLM, partial success
"""

from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from app.services.errors import AgentNotFound, MissingTemplate, ValidationFailed
from app.services.prompt_cache import (
    BACKGROUND_HEADING,
    BACKGROUND_PLACEHOLDER,
    NO_FIELDS_SELECTED_LINE,
    NO_VALID_FIELDS_LINE,
    PromptBuildService,
    PromptCacheResolver,
    compute_cache_key,
    render_background_section,
)


class TestCacheKey:
    """Tests for compute_cache_key()."""

    def test_field_order_is_irrelevant(self):
        a = compute_cache_key("agent-1", ["phone_number", "first_name"], {"Phone": "phone_number"})
        b = compute_cache_key("agent-1", ["first_name", "phone_number"], {"Phone": "phone_number"})

        assert a == b

    def test_mapping_key_order_is_irrelevant(self):
        a = compute_cache_key("agent-1", ["city"], {"City": "city", "Zip": "zip_code"})
        b = compute_cache_key("agent-1", ["city"], {"Zip": "zip_code", "City": "city"})

        assert a == b

    def test_format(self):
        assert compute_cache_key("A", ["phone_number", "first_name"], {}) == "A-first_name,phone_number-{}"

    def test_agent_fields_and_mappings_all_matter(self):
        base = compute_cache_key("A", ["city"], {})

        assert compute_cache_key("B", ["city"], {}) != base
        assert compute_cache_key("A", ["state"], {}) != base
        assert compute_cache_key("A", ["city"], {"Town": "city"}) != base

    def test_repeated_field_changes_key_but_not_text(self):
        assert compute_cache_key("A", ["city", "city"], {}) == "A-city,city-{}"
        assert compute_cache_key("A", ["city", "city"], {}) != compute_cache_key("A", ["city"], {})
        assert render_background_section(["city", "city"]) == render_background_section(["city"])


class TestRenderBackgroundSection:
    """Tests for render_background_section()."""

    def test_known_fields_render_in_selection_order(self):
        section = render_background_section(["last_name", "first_name"])

        assert section == (
            f"{BACKGROUND_HEADING}\n"
            "- Last Name: {{last_name}}\n"
            "- First Name: {{first_name}}\n"
        )

    def test_no_fields_selected(self):
        assert render_background_section([]) == f"{BACKGROUND_HEADING}\n{NO_FIELDS_SELECTED_LINE}"

    def test_only_unknown_fields(self):
        assert render_background_section(["favorite_color"]) == f"{BACKGROUND_HEADING}\n{NO_VALID_FIELDS_LINE}"

    def test_unknown_and_duplicate_fields_dropped(self):
        section = render_background_section(["city", "favorite_color", "city"])

        assert section.count("{{city}}") == 1
        assert "favorite_color" not in section

    def test_mappings_do_not_change_text(self):
        assert render_background_section(["city"], {"Town": "city"}) == render_background_section(["city"])


class TestPromptCacheResolver:
    """Tests for PromptCacheResolver.resolve()."""

    def test_miss_renders_and_stores(self, db, make_agent):
        agent = make_agent()

        resolution = PromptCacheResolver(db).resolve(agent, ["first_name", "phone_number"], {})

        assert resolution.cached is False
        assert BACKGROUND_PLACEHOLDER not in resolution.prompt
        assert "- First Name: {{first_name}}" in resolution.prompt
        assert "- Phone Number: {{phone_number}}" in resolution.prompt
        assert resolution.prompt.startswith("You are a friendly assistant")
        assert resolution.prompt.endswith("Keep the call short.")

        db.refresh(agent)
        assert agent.dynamic_prompt == resolution.prompt
        assert agent.prompt_cache_key == resolution.cache_key
        assert agent.prompt_updated_at is not None

    def test_hit_returns_stored_prompt_without_rerender(self, db, make_agent):
        agent = make_agent()
        resolver = PromptCacheResolver(db)
        first = resolver.resolve(agent, ["first_name"], {})

        # Template edits do not matter while the key matches
        agent.configured_prompt = "changed {USER_BACKGROUND_SECTION}"
        second = resolver.resolve(agent, ["first_name"], {})

        assert second.cached is True
        assert second.prompt == first.prompt

    def test_changed_fields_invalidate(self, db, make_agent):
        agent = make_agent()
        resolver = PromptCacheResolver(db)
        resolver.resolve(agent, ["first_name"], {})

        second = resolver.resolve(agent, ["first_name", "city"], {})

        assert second.cached is False
        assert "{{city}}" in second.prompt

    def test_changed_mappings_invalidate(self, db, make_agent):
        agent = make_agent()
        resolver = PromptCacheResolver(db)
        resolver.resolve(agent, ["first_name"], {"First": "first_name"})

        second = resolver.resolve(agent, ["first_name"], {"Given Name": "first_name"})

        assert second.cached is False

    def test_preseeded_cache_key_is_hit_for_permuted_fields(self, db, make_agent):
        agent = make_agent(
            agent_id="A",
            dynamic_prompt="cached prompt",
            prompt_cache_key="A-first_name,phone_number-{}"
        )

        resolution = PromptCacheResolver(db).resolve(agent, ["phone_number", "first_name"], {})

        assert resolution.cached is True
        assert resolution.prompt == "cached prompt"

    def test_preseeded_cache_key_misses_for_other_fields(self, db, make_agent):
        agent = make_agent(
            agent_id="A",
            dynamic_prompt="cached prompt",
            prompt_cache_key="A-first_name,phone_number-{}"
        )

        resolution = PromptCacheResolver(db).resolve(agent, ["email"], {})

        assert resolution.cached is False
        assert "- Email: {{email}}" in resolution.prompt
        db.refresh(agent)
        assert agent.prompt_cache_key == "A-email-{}"
        assert agent.dynamic_prompt == resolution.prompt

    def test_only_first_placeholder_replaced(self, db, make_agent):
        agent = make_agent(configured_prompt=f"A {BACKGROUND_PLACEHOLDER} B {BACKGROUND_PLACEHOLDER}")

        resolution = PromptCacheResolver(db).resolve(agent, ["city"], {})

        assert resolution.prompt.count(BACKGROUND_PLACEHOLDER) == 1

    @pytest.mark.parametrize("template", [None, "", "   "])
    def test_missing_template(self, db, make_agent, template):
        agent = make_agent(configured_prompt=template)

        with pytest.raises(MissingTemplate, match="Please reconfigure the agent"):
            PromptCacheResolver(db).resolve(agent, ["city"], {})

    def test_template_without_placeholder(self, db, make_agent):
        agent = make_agent(configured_prompt="No placeholder here.")

        with pytest.raises(MissingTemplate):
            PromptCacheResolver(db).resolve(agent, ["city"], {})

        db.refresh(agent)
        assert agent.dynamic_prompt is None

    def test_store_failure_still_returns_prompt(self, make_agent):
        agent = make_agent()
        broken_db = Mock()
        broken_db.commit.side_effect = OperationalError("UPDATE", {}, Exception("db down"))

        resolution = PromptCacheResolver(broken_db).resolve(agent, ["city"], {})

        assert resolution.cached is False
        assert "{{city}}" in resolution.prompt
        broken_db.rollback.assert_called_once()

    def test_database_down_on_store_still_returns_prompt(self, db, engine, make_agent):
        agent = make_agent()

        def fail(conn, cursor, statement, parameters, context, executemany):
            raise OperationalError(statement, parameters, Exception("db down"))

        event.listen(engine, "before_cursor_execute", fail)
        try:
            resolution = PromptCacheResolver(db).resolve(agent, ["city"], {})
        finally:
            event.remove(engine, "before_cursor_execute", fail)

        assert resolution.cached is False
        assert "{{city}}" in resolution.prompt
        assert resolution.cache_key == "agent-1-city-{}"


class TestPromptBuildService:
    """Tests for PromptBuildService.build()."""

    @pytest.fixture
    def configuration_service(self):
        service = Mock()
        service.update_llm = AsyncMock(return_value={"success": True, "llm_data": {"llm_id": "llm_123"}})
        return service

    @pytest.mark.asyncio
    async def test_build_pushes_prompt(self, db, make_agent, configuration_service):
        make_agent(customizations={"integrations": {"transfer": {"enabled": False}}})

        result = await PromptBuildService(db, configuration_service).build(
            "user-1", "agent-1", ["first_name"], {}
        )

        assert result["cached"] is False
        assert result["llm_updated"] is True
        assert result["llm_error"] is None
        configuration_service.update_llm.assert_awaited_once_with(
            user_id="user-1",
            agent_id="agent-1",
            dynamic_prompt=result["prompt"],
            integrations={"transfer": {"enabled": False}}
        )

    @pytest.mark.asyncio
    async def test_second_build_is_cached(self, db, make_agent, configuration_service):
        make_agent()
        service = PromptBuildService(db, configuration_service)

        first = await service.build("user-1", "agent-1", ["city", "state"], {"City": "city"})
        second = await service.build("user-1", "agent-1", ["state", "city"], {"City": "city"})

        assert second["cached"] is True
        assert second["prompt"] == first["prompt"]
        assert second["cache_key"] == first["cache_key"]

    @pytest.mark.asyncio
    async def test_missing_agent_id(self, db, configuration_service):
        with pytest.raises(ValidationFailed, match="Agent ID is required"):
            await PromptBuildService(db, configuration_service).build("user-1", None)

    @pytest.mark.asyncio
    async def test_other_users_agent_is_not_found(self, db, make_agent, configuration_service):
        make_agent(user_id="someone-else")

        with pytest.raises(AgentNotFound):
            await PromptBuildService(db, configuration_service).build("user-1", "agent-1", ["city"])

    @pytest.mark.asyncio
    async def test_agent_without_llm_is_partial_success(self, db, make_agent, configuration_service):
        make_agent(retell_llm_id=None)

        result = await PromptBuildService(db, configuration_service).build("user-1", "agent-1", ["city"])

        assert result["llm_updated"] is False
        assert result["llm_error"] == "Agent does not have a Retell LLM ID"
        configuration_service.update_llm.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_push_error_is_reported_not_raised(self, db, make_agent, configuration_service):
        agent = make_agent()
        configuration_service.update_llm.return_value = {"success": False, "error": "Invalid Retell API key."}

        result = await PromptBuildService(db, configuration_service).build("user-1", "agent-1", ["city"])

        assert result["llm_updated"] is False
        assert result["llm_error"] == "Invalid Retell API key."
        db.refresh(agent)
        assert agent.dynamic_prompt == result["prompt"]

    @pytest.mark.asyncio
    async def test_push_exception_is_reported(self, db, make_agent, configuration_service):
        make_agent()
        configuration_service.update_llm.side_effect = RuntimeError("socket closed")

        result = await PromptBuildService(db, configuration_service).build("user-1", "agent-1", ["city"])

        assert result["llm_updated"] is False
        assert result["llm_error"] == "Error updating voice LLM: socket closed"

    @pytest.mark.asyncio
    async def test_database_down_after_lookup_still_pushes(self, db, engine, make_agent, configuration_service):
        make_agent(customizations={"integrations": {"transfer": {"enabled": True}}})
        down = []

        def fail_from_first_write(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith("UPDATE"):
                down.append(statement)
            if down:
                raise OperationalError(statement, parameters, Exception("db down"))

        event.listen(engine, "before_cursor_execute", fail_from_first_write)
        try:
            result = await PromptBuildService(db, configuration_service).build("user-1", "agent-1", ["city"])
        finally:
            event.remove(engine, "before_cursor_execute", fail_from_first_write)

        assert down
        assert result["llm_updated"] is True
        configuration_service.update_llm.assert_awaited_once_with(
            user_id="user-1",
            agent_id="agent-1",
            dynamic_prompt=result["prompt"],
            integrations={"transfer": {"enabled": True}}
        )
