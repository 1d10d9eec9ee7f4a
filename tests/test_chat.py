"""
Tests for the in-memory chat service.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import build_email
from onebox.chat import ChatService
from onebox.exceptions import ConfigurationError
from onebox.models import utcnow


@pytest.fixture
def llm():
    client = MagicMock()
    client.complete = AsyncMock(return_value="You should reply and schedule a meeting.")
    return client


@pytest.fixture
def chat(llm, indexer):
    return ChatService(llm, indexer, max_age_hours=1)


class TestChatService:

    @pytest.mark.asyncio
    async def test_chat_creates_session(self, chat, llm):
        response = await chat.chat("What should I do with this lead?")

        assert response["message"]["role"] == "assistant"
        assert response["message"]["content"] == "You should reply and schedule a meeting."
        assert response["suggested_actions"] == ["Generate reply", "Schedule meeting"]

        session = chat.get_session(response["session_id"])
        assert [message["role"] for message in session["messages"]] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_session_is_continued(self, chat, llm):
        first = await chat.chat("Hello")
        second = await chat.chat("And then?", session_id=first["session_id"])

        assert second["session_id"] == first["session_id"]
        history = llm.complete.await_args.args[0]
        assert [message["role"] for message in history] == ["system", "user", "assistant", "user"]

    @pytest.mark.asyncio
    async def test_email_context_is_included(self, chat, llm, indexer):
        """
        Test that referenced emails reach the model.

        Verifies that the email is loaded from the index and its subject
        appears in the system instruction.
        """
        indexer.get_by_id.return_value = build_email()

        response = await chat.chat("Summarize this", email_ids=["e1"])

        indexer.get_by_id.assert_awaited_once_with("e1")
        system_prompt = llm.complete.await_args.args[0][0]["content"]
        assert "Subject: Pricing?" in system_prompt
        assert "View email details" in response["suggested_actions"]

    @pytest.mark.asyncio
    async def test_chat_without_model(self, indexer):
        service = ChatService(None, indexer)

        with pytest.raises(ConfigurationError):
            await service.chat("Hello")
        assert await service.health_check() is True

    @pytest.mark.asyncio
    async def test_sessions_delete_and_stats(self, chat):
        first = await chat.chat("one")
        await chat.chat("two")

        assert len(chat.get_sessions(limit=10)) == 2
        assert chat.stats() == {
            "total_sessions": 2,
            "total_messages": 4,
            "average_messages_per_session": 2.0,
        }
        assert chat.delete_session(first["session_id"]) is True
        assert chat.delete_session(first["session_id"]) is False
        assert chat.get_session(first["session_id"]) is None

    @pytest.mark.asyncio
    async def test_cleanup_removes_idle_sessions(self, chat):
        stale = await chat.chat("old")
        fresh = await chat.chat("new")
        chat.sessions[stale["session_id"]].updated_at = utcnow() - timedelta(hours=2)

        assert chat.cleanup_old_sessions() == 1
        assert chat.get_session(fresh["session_id"]) is not None
        assert chat.get_session(stale["session_id"]) is None
