import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from sqlalchemy import event

from agentbuilder import db, repository
from agentbuilder.config import settings
from agentbuilder.errors import InsufficientCreditsError, NotFoundError, ValidationError


def _set_columns(model, row_id, **values):
    with db.session_scope() as s:
        s.query(model).filter(model.id == row_id).update(values, synchronize_session=False)


class TestAgents:

    def test_create_defaults(self):
        agent = repository.create_agent("user-1", {"name": "Bot"})
        assert agent["purpose"] == "general"
        assert agent["tone"] == "friendly"
        assert agent["is_active"] is True
        assert agent["is_public"] is False
        assert agent["use_platform_key"] is True
        assert agent["api_key_id"] is None
        assert agent["created_at"] == agent["updated_at"]

    def test_create_ignores_unknown_columns(self):
        agent = repository.create_agent("user-1", {"name": "Bot", "user_id": "intruder", "credits": 99})
        assert agent["user_id"] == "user-1"

    def test_get_agent_scoped_to_user(self, owner_agent):
        assert repository.get_agent(owner_agent["id"], "user-1")["name"] == "Support Bot"
        assert repository.get_agent(owner_agent["id"], "user-2") is None
        assert repository.get_agent(owner_agent["id"])["id"] == owner_agent["id"]

    def test_verify_ownership_needs_both_ids(self, owner_agent):
        assert repository.verify_agent_ownership(owner_agent["id"], "") is None
        assert repository.verify_agent_ownership("", "user-1") is None

    def test_user_agents_newest_first(self):
        first = repository.create_agent("user-1", {"name": "First"})
        _set_columns(db.Agent, first["id"], created_at="2020-01-01T00:00:00")
        second = repository.create_agent("user-1", {"name": "Second"})
        assert [a["id"] for a in repository.get_user_agents("user-1")] == [second["id"], first["id"]]

    def test_update_bumps_timestamp(self, owner_agent):
        _set_columns(db.Agent, owner_agent["id"], updated_at="2020-01-01T00:00:00")
        updated = repository.update_agent(owner_agent["id"], {"persona": "calm", "created_at": "x"})
        assert updated["persona"] == "calm"
        assert updated["updated_at"] > "2020-01-01T00:00:00"
        assert updated["created_at"] == owner_agent["created_at"]

    def test_update_missing_agent(self):
        with pytest.raises(NotFoundError):
            repository.update_agent("missing", {"name": "x"})

    def test_update_rejects_null_for_required_columns(self, owner_agent):
        with pytest.raises(ValidationError, match="description, tone"):
            repository.update_agent(owner_agent["id"], {"tone": None, "description": None})
        assert repository.get_agent(owner_agent["id"])["tone"] == "professional"

    def test_update_allows_null_for_optional_columns(self, owner_agent):
        repository.update_agent(owner_agent["id"], {"temperature": 0.3})
        updated = repository.update_agent(owner_agent["id"], {"temperature": None, "api_key_id": None})
        assert updated["temperature"] is None

    def test_delete_removes_dependents(self, owner_agent):
        other = repository.create_agent("user-1", {"name": "Other"})
        for agent_id in (owner_agent["id"], other["id"]):
            repository.add_knowledge_source(agent_id, {"content": "x"})
            repository.save_conversation(agent_id, "s1", "hi", "hello")
            repository.log_analytics(agent_id, "conversation", {})

        deleted = repository.delete_agent(owner_agent["id"], "user-1")
        assert deleted == {"knowledgeSources": 1, "knowledgeVectors": 0, "conversations": 1, "analytics": 1}
        assert repository.get_agent_dependencies(owner_agent["id"]) == {
            "knowledgeSources": 0, "knowledgeVectors": 0, "conversations": 0, "analytics": 0,
        }
        assert repository.get_agent_dependencies(other["id"])["conversations"] == 1

    def test_delete_requires_owner(self, owner_agent):
        with pytest.raises(NotFoundError, match="Agent not found or access denied"):
            repository.delete_agent(owner_agent["id"], "user-2")

    def test_delete_is_all_or_nothing(self, owner_agent):
        repository.add_knowledge_source(owner_agent["id"], {"content": "x"})
        repository.save_conversation(owner_agent["id"], "s1", "hi", "hello")
        repository.log_analytics(owner_agent["id"], "conversation", {})
        before = repository.get_agent_dependencies(owner_agent["id"])

        def fail(mapper, connection, target):
            raise RuntimeError("disk full")

        event.listen(db.Conversation, "before_delete", fail)
        try:
            with pytest.raises(RuntimeError, match="disk full"):
                repository.delete_agent(owner_agent["id"], "user-1")
        finally:
            event.remove(db.Conversation, "before_delete", fail)

        assert repository.get_agent(owner_agent["id"]) is not None
        assert repository.get_agent_dependencies(owner_agent["id"]) == before


class TestKnowledgeSources:

    def test_add_and_update(self, owner_agent):
        source = repository.add_knowledge_source(owner_agent["id"], {
            "source_type": "url", "source_url": "https://acme.com", "content": "text",
        })
        assert source["status"] == "processing"
        assert source["vector_count"] == 0

        updated = repository.update_knowledge_source(source["id"], {
            "status": "completed", "vector_count": 3, "agent_id": "hijack",
        })
        assert updated["status"] == "completed"
        assert updated["vector_count"] == 3
        assert updated["agent_id"] == owner_agent["id"]

    def test_delete_scoped_to_agent(self, owner_agent):
        source = repository.add_knowledge_source(owner_agent["id"], {"content": "x"})
        assert repository.delete_knowledge_source(source["id"], "another-agent") is False
        assert repository.delete_knowledge_source(source["id"], owner_agent["id"]) is True
        assert repository.get_knowledge_source(source["id"]) is None


class TestConversations:

    def test_metadata_round_trip(self, owner_agent):
        repository.save_conversation(owner_agent["id"], "s1", "hi", "hello", {"tokens_used": 5})
        [conv] = repository.get_conversations(owner_agent["id"], "s1")
        assert conv["metadata"] == {"tokens_used": 5}
        assert repository.check_conversation_exists(owner_agent["id"], "s1")
        assert not repository.check_conversation_exists(owner_agent["id"], "s2")

    def test_sessions_are_separate(self, owner_agent):
        repository.save_conversation(owner_agent["id"], "s1", "a", "b")
        repository.save_conversation(owner_agent["id"], "s2", "c", "d")
        assert len(repository.get_conversations(owner_agent["id"], "s1")) == 1


class TestCredits:

    def test_grant_and_deduct(self):
        assert repository.get_credits("user-1") == 0
        assert repository.grant_credits("user-1", 3) == 3
        assert repository.grant_credits("user-1", 2) == 5
        assert repository.deduct_credits("user-1", 4) == 1
        assert repository.has_credits("user-1")
        assert not repository.has_credits("user-1", 2)

    def test_open_account_grants_starting_credits_once(self, monkeypatch):
        monkeypatch.setattr(settings, "starting_credits", 10)
        assert repository.open_credit_account("user-9") == 10
        repository.deduct_credits("user-9", 4)
        assert repository.open_credit_account("user-9") == 6
        assert repository.has_credits("user-9", 6)

    def test_deduct_never_goes_negative(self):
        repository.grant_credits("user-1", 1)
        with pytest.raises(InsufficientCreditsError):
            repository.deduct_credits("user-1", 2)
        assert repository.get_credits("user-1") == 1


def test_analytics_filter(owner_agent):
    repository.log_analytics(owner_agent["id"], "conversation", {"a": 1}, tokens_used=7)
    repository.log_analytics(owner_agent["id"], "knowledge_upload", {}, success=False)
    [event] = repository.get_analytics(owner_agent["id"], "conversation")
    assert event["event_data"] == {"a": 1}
    assert event["tokens_used"] == 7
    assert len(repository.get_analytics(owner_agent["id"])) == 2


class TestAnalytics:

    def _event(self, agent_id, created_at, event_type="conversation", tokens=0, success=True):
        event = repository.log_analytics(agent_id, event_type, {}, tokens, success)
        _set_columns(db.AnalyticsEvent, event["id"], created_at=created_at)
        return event

    def test_date_range_is_inclusive(self, owner_agent):
        self._event(owner_agent["id"], "2026-01-01T00:00:00+00:00")
        self._event(owner_agent["id"], "2026-02-01T00:00:00+00:00")
        self._event(owner_agent["id"], "2026-03-01T00:00:00+00:00")
        events = repository.get_analytics(
            owner_agent["id"], start="2026-02-01T00:00:00+00:00", end="2026-03-01T00:00:00+00:00",
        )
        assert [e["created_at"][:7] for e in events] == ["2026-03", "2026-02"]

    def test_limit(self, owner_agent):
        for month in (1, 2, 3):
            self._event(owner_agent["id"], f"2026-0{month}-01T00:00:00+00:00")
        [latest] = repository.get_analytics(owner_agent["id"], limit=1)
        assert latest["created_at"].startswith("2026-03")

    def test_summary(self, owner_agent):
        self._event(owner_agent["id"], "2026-01-01", tokens=10)
        self._event(owner_agent["id"], "2026-01-02", tokens=5, success=False)
        self._event(owner_agent["id"], "2026-01-03", event_type="knowledge_upload")
        metrics = repository.summarize_analytics(repository.get_analytics(owner_agent["id"]))
        assert metrics == {
            "total_events": 3,
            "successful_events": 2,
            "total_tokens": 15,
            "event_types": {"conversation": 2, "knowledge_upload": 1},
            "avg_tokens": 5,
        }

    def test_summary_of_nothing(self):
        assert repository.summarize_analytics([])["avg_tokens"] == 0

    def test_prune(self, owner_agent):
        self._event(owner_agent["id"], "2020-01-01T00:00:00+00:00")
        recent = self._event(owner_agent["id"], "2026-01-01T00:00:00+00:00")
        assert repository.prune_analytics(owner_agent["id"], "2025-01-01T00:00:00+00:00") == 1
        assert [e["id"] for e in repository.get_analytics(owner_agent["id"])] == [recent["id"]]
