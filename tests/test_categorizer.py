"""
Test suite for GroqCategorizer and the retrying Groq client.

The Groq client is replaced with a MagicMock exposing an AsyncMock
``complete`` so no network calls are made.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import build_email
from onebox.categorization import GroqCategorizer
from onebox.exceptions import CategorizationError, ConfigurationError, LLMRequestError
from onebox.integrations.groq import EnhancedGroqClient
from onebox.models import FALLBACK_CATEGORY, ContextMetadata, ContextRecord, EmailCategory


@pytest.fixture
def llm():
    client = MagicMock()
    client.complete = AsyncMock(return_value="Interested")
    client.get_performance_metrics = MagicMock(return_value={"total_requests": 0})
    return client


@pytest.fixture
def categorizer(llm):
    return GroqCategorizer(client=llm, daily_quota=5, retry_attempts=1)


class TestKeywordRules:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("subject, body, sender, expected", [
        ("Automatic reply: Pricing", "I am away", "x@corp.com", EmailCategory.OUT_OF_OFFICE),
        ("Invitation: Demo call", "See you there", "x@corp.com", EmailCategory.MEETING_BOOKED),
        ("Re: proposal", "We are not interested at this time", "x@corp.com", EmailCategory.NOT_INTERESTED),
        ("Weekly digest", "Click to unsubscribe", "news@corp.com", EmailCategory.SPAM),
        ("Hello", "Nice to meet you", "noreply@corp.com", EmailCategory.SPAM),
    ])
    async def test_keyword_rules_skip_model(self, categorizer, llm, subject, body, sender, expected):
        email = build_email(subject=subject, body=body, sender=sender)

        assert await categorizer.categorize(email) == expected
        llm.complete.assert_not_awaited()

    def test_no_rule_matches(self, categorizer):
        assert categorizer.keyword_category(build_email()) is None


class TestModelCategorization:

    @pytest.mark.asyncio
    async def test_model_label_is_used_and_cached(self, categorizer, llm):
        """
        Test the model path and the content cache.

        Verifies that the model is asked once and an identical email is
        answered from the cache without spending quota.
        """
        email = build_email()

        assert await categorizer.categorize(email) == EmailCategory.INTERESTED
        assert await categorizer.categorize(build_email("other-id")) == EmailCategory.INTERESTED

        llm.complete.assert_awaited_once()
        assert categorizer.quota_status()["calls"] == 1

    @pytest.mark.asyncio
    async def test_invalid_label_maps_to_fallback(self, categorizer, llm):
        llm.complete.return_value = "Very Interesting"

        assert await categorizer.categorize(build_email()) == FALLBACK_CATEGORY

    @pytest.mark.asyncio
    async def test_label_with_punctuation_is_accepted(self, categorizer, llm):
        llm.complete.return_value = "Meeting Booked."

        assert await categorizer.categorize(build_email()) == EmailCategory.MEETING_BOOKED

    @pytest.mark.asyncio
    async def test_model_failure_raises(self, categorizer, llm):
        llm.complete.side_effect = LLMRequestError("rate limited")

        with pytest.raises(CategorizationError):
            await categorizer.categorize(build_email())

    @pytest.mark.asyncio
    async def test_quota_exhaustion_falls_back(self, llm):
        categorizer = GroqCategorizer(client=llm, daily_quota=1)

        await categorizer.categorize(build_email(body="first unique body"))
        result = await categorizer.categorize(build_email(body="second unique body"))

        assert result == FALLBACK_CATEGORY
        llm.complete.assert_awaited_once()
        assert categorizer.quota_exceeded() is True

    @pytest.mark.asyncio
    async def test_disabled_returns_fallback(self, categorizer, llm):
        categorizer.disable()

        assert await categorizer.categorize(build_email()) == FALLBACK_CATEGORY
        llm.complete.assert_not_awaited()

        categorizer.enable()
        assert await categorizer.categorize(build_email()) == EmailCategory.INTERESTED

    @pytest.mark.asyncio
    async def test_without_client_uses_keywords_only(self):
        categorizer = GroqCategorizer(client=None)

        assert await categorizer.categorize(build_email()) == FALLBACK_CATEGORY
        assert await categorizer.health_check() is True
        assert categorizer.stats()["llm_configured"] is False

    @pytest.mark.asyncio
    async def test_clear_cache(self, categorizer, llm):
        await categorizer.categorize(build_email())
        categorizer.clear_cache()
        await categorizer.categorize(build_email())

        assert llm.complete.await_count == 2
        assert categorizer.stats()["cache_size"] == 1

    @pytest.mark.asyncio
    async def test_cache_evicts_least_recently_used(self, categorizer, llm, monkeypatch):
        monkeypatch.setattr("onebox.categorization.categorizer.CACHE_SIZE", 2)
        first = build_email(subject="Pricing?")
        second = build_email(subject="Team size?")
        third = build_email(subject="Discounts?")

        await categorizer.categorize(first)
        await categorizer.categorize(second)
        await categorizer.categorize(first)
        await categorizer.categorize(third)
        assert llm.complete.await_count == 3

        await categorizer.categorize(first)
        assert llm.complete.await_count == 3
        await categorizer.categorize(second)
        assert llm.complete.await_count == 4


class TestReplySuggestion:

    @pytest.mark.asyncio
    async def test_reply_uses_contexts(self, categorizer, llm):
        llm.complete.return_value = "Thanks for reaching out! Book a call here: https://cal.example.com"
        contexts = [ContextRecord("manual-1", "Booking link: https://cal.example.com", ContextMetadata("manual"))]

        suggestion = await categorizer.generate_reply_suggestion(build_email(), contexts)

        assert suggestion["email_id"] == "e1"
        assert suggestion["context_used"] == ["manual-1"]
        assert 50 < suggestion["confidence"] <= 95
        prompt = llm.complete.await_args.args[0][1]["content"]
        assert "Booking link" in prompt

    @pytest.mark.asyncio
    async def test_reply_requires_client(self):
        with pytest.raises(CategorizationError):
            await GroqCategorizer(client=None).generate_reply_suggestion(build_email(), [])

    def test_confidence_is_capped(self):
        contexts = [ContextRecord(f"c{i}", "x", ContextMetadata("manual")) for i in range(10)]

        assert GroqCategorizer.reply_confidence("a" * 200 + " meeting", contexts) == 95


class TestEnhancedGroqClient:

    def test_requires_key_or_client(self):
        with pytest.raises(ConfigurationError):
            EnhancedGroqClient(api_key="")

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=" Spam \n"))])
        sdk = MagicMock()
        sdk.chat.completions.create.side_effect = [RuntimeError("503"), response]
        client = EnhancedGroqClient(api_key="", client=sdk, backoff_base=0)

        assert await client.complete([{"role": "user", "content": "hi"}], max_retries=3) == "Spam"
        assert sdk.chat.completions.create.call_count == 2
        assert client.get_performance_metrics()["total_requests"] == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        sdk = MagicMock()
        sdk.chat.completions.create.side_effect = RuntimeError("boom")
        client = EnhancedGroqClient(api_key="", client=sdk, backoff_base=0)

        with pytest.raises(LLMRequestError):
            await client.complete([{"role": "user", "content": "hi"}], max_retries=2)
        assert sdk.chat.completions.create.call_count == 2
        assert len(client.metrics["errors"]) == 2

    @pytest.mark.asyncio
    async def test_metrics_written_after_request(self, tmp_path):
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="Spam"))])
        sdk = MagicMock()
        sdk.chat.completions.create.return_value = response
        metrics_file = tmp_path / "groq_metrics.json"
        client = EnhancedGroqClient(api_key="", client=sdk, metrics_file=str(metrics_file))

        await client.complete([{"role": "user", "content": "hi"}])

        persisted = json.loads(metrics_file.read_text())
        assert persisted["performance"]["total_requests"] == 1
        assert persisted["requests"][0]["status"] == "success"
