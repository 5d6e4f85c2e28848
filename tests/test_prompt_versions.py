"""
Tests for PromptVersionManager
"""

import pytest

from app.services.errors import ValidationFailed
from app.services.prompt_versions import DEFAULT_CHANGES_SUMMARY, PromptVersionManager

STATES = [{"name": "warm_intro"}, {"name": "schedule_meet"}]


class TestPromptVersionManager:
    """Tests for version creation and loading."""

    def test_first_version_is_one(self, db):
        version = PromptVersionManager(db).create_new_version("session-1", "You are Ava.", STATES)

        assert version.version_number == 1
        assert version.generation_context == {
            "changes_summary": DEFAULT_CHANGES_SUMMARY,
            "progress_events": None,
            "rag_contexts": None,
        }

    def test_versions_increment_per_session(self, db):
        manager = PromptVersionManager(db)
        manager.create_new_version("session-1", "v1", STATES)
        manager.create_new_version("session-1", "v2", STATES, markdown_source="# v2")
        other = manager.create_new_version("session-2", "other", STATES)

        latest = manager.get_latest_version("session-1")

        assert latest.version_number == 2
        assert latest.markdown_source == "# v2"
        assert other.version_number == 1

    def test_list_newest_first(self, db):
        manager = PromptVersionManager(db)
        for prompt in ("a", "b", "c"):
            manager.create_new_version("session-1", prompt, STATES)

        assert [v.version_number for v in manager.list_versions("session-1")] == [3, 2, 1]

    def test_get_version(self, db):
        manager = PromptVersionManager(db)
        created = manager.create_new_version("session-1", "p", STATES, changes_summary="Tightened intro")

        loaded = manager.get_version(created.id)

        assert loaded.base_prompt == "p"
        assert loaded.to_dict()["generation_context"]["changes_summary"] == "Tightened intro"
        assert manager.get_version(9999) is None

    @pytest.mark.parametrize("session_id,base_prompt,states", [
        ("", "p", STATES),
        ("session-1", "", STATES),
        ("session-1", "p", None),
    ])
    def test_required_fields(self, db, session_id, base_prompt, states):
        with pytest.raises(ValidationFailed, match="session_id, base_prompt, and states are required"):
            PromptVersionManager(db).create_new_version(session_id, base_prompt, states)
