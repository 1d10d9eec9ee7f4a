"""
Tests for the SQL email index and context store against in-memory SQLite.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import build_email
from onebox.context import SqlContextStore, extract_terms
from onebox.exceptions import ContextStoreError, IndexingError
from onebox.indexing import SqlEmailIndex
from onebox.models import (
    ContextMetadata,
    ContextPriority,
    ContextRecord,
    EmailCategory,
    EmailSearchQuery,
    utcnow,
)


@pytest.fixture
def index(database):
    return SqlEmailIndex(database)


@pytest.fixture
def store(database):
    return SqlContextStore(database)


class TestSqlEmailIndex:

    @pytest.mark.asyncio
    async def test_index_is_idempotent(self, index, database):
        """
        Test idempotent indexing.

        Verifies that the first call reports a new row, the second reports
        none and only one row exists.
        """
        email = build_email()

        assert await index.index_email(email) is True
        assert await index.index_email(email) is False

        result = await index.search(EmailSearchQuery())
        assert result.total == 1

    @pytest.mark.asyncio
    async def test_update_category_round_trip(self, index):
        await index.index_email(build_email())

        await index.update_category("e1", EmailCategory.INTERESTED)

        stored = await index.get_by_id("e1")
        assert stored.category == EmailCategory.INTERESTED
        assert stored.primary_sender == "a@b.com"
        assert stored.date == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_update_category_of_missing_email(self, index):
        with pytest.raises(IndexingError):
            await index.update_category("missing", EmailCategory.SPAM)

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, index):
        assert await index.get_by_id("nope") is None

    @pytest.mark.asyncio
    async def test_search_filters(self, index):
        await index.index_email(build_email("e1", subject="Pricing?", account="sales", has_attachments=True)
                                .with_category(EmailCategory.INTERESTED))
        await index.index_email(build_email("e2", subject="Lunch", body="Tacos?", sender="friend@x.com",
                                            account="personal").with_category(EmailCategory.SPAM))
        await index.index_email(build_email("e3", subject="Re: Pricing", account="sales",
                                            date=datetime(2024, 1, 1, tzinfo=timezone.utc)))

        by_text = await index.search(EmailSearchQuery(query="pricing"))
        assert sorted(email.id for email in by_text.data) == ["e1", "e3"]

        by_account = await index.search(EmailSearchQuery(account="personal"))
        assert [email.id for email in by_account.data] == ["e2"]

        by_category = await index.search(EmailSearchQuery(category=EmailCategory.INTERESTED))
        assert [email.id for email in by_category.data] == ["e1"]

        by_sender = await index.search(EmailSearchQuery(sender="FRIEND@"))
        assert [email.id for email in by_sender.data] == ["e2"]

        by_attachments = await index.search(EmailSearchQuery(has_attachments=True))
        assert [email.id for email in by_attachments.data] == ["e1"]

        by_date = await index.search(EmailSearchQuery(date_from=datetime(2024, 3, 1, tzinfo=timezone.utc)))
        assert sorted(email.id for email in by_date.data) == ["e1", "e2"]

    @pytest.mark.asyncio
    async def test_pagination_and_sorting(self, index):
        base = datetime(2024, 5, 1, tzinfo=timezone.utc)
        for offset in range(5):
            await index.index_email(build_email(f"e{offset}", date=base + timedelta(hours=offset)))

        first_page = await index.search(EmailSearchQuery(page=1, limit=2))
        assert [email.id for email in first_page.data] == ["e4", "e3"]
        assert first_page.to_dict()["pagination"] == {"page": 1, "limit": 2, "total": 5, "total_pages": 3}

        last_page = await index.search(EmailSearchQuery(page=3, limit=2, sort_order="asc"))
        assert [email.id for email in last_page.data] == ["e4"]

    @pytest.mark.asyncio
    async def test_stats(self, index):
        await index.index_email(build_email("e1", date=utcnow()).with_category(EmailCategory.INTERESTED))
        await index.index_email(build_email("e2", account="other", date=utcnow() - timedelta(days=30)))

        stats = await index.stats()

        assert stats["total"] == 2
        assert stats["category_counts"] == {"Interested": 1, "Uncategorized": 1}
        assert stats["account_counts"] == {"acct1": 1, "other": 1}
        assert stats["recent_emails"] == 1

    @pytest.mark.asyncio
    async def test_health_check(self, index):
        assert await index.health_check() is True


class TestSqlContextStore:

    @pytest.mark.asyncio
    async def test_store_is_an_upsert(self, store):
        """
        Test that storing the same email context twice keeps one record.

        Verifies the second write replaces the content of the first.
        """
        email = build_email()
        await store.store_context(ContextRecord.for_email(email, EmailCategory.SPAM))
        await store.store_context(ContextRecord.for_email(email, EmailCategory.INTERESTED))

        records = await store.list_contexts()
        assert len(records) == 1
        assert records[0].id == "email-e1"
        assert records[0].metadata.priority == ContextPriority.HIGH
        assert records[0].metadata.tags[0] == "Interested"

    @pytest.mark.asyncio
    async def test_relevance_orders_by_priority_then_score(self, store):
        await store.add_context("pricing enterprise plan discount", "manual", priority="low")
        await store.add_context("enterprise pricing sheet", "manual", priority="high")
        await store.add_context("pricing", "manual", priority="high")
        await store.add_context("holiday schedule", "manual", priority="high")

        results = await store.get_relevant_contexts("What is the enterprise pricing?")

        assert [record.content for record in results] == [
            "enterprise pricing sheet",
            "pricing",
            "pricing enterprise plan discount",
        ]

    @pytest.mark.asyncio
    async def test_relevance_respects_limit(self, store):
        for index in range(4):
            await store.add_context(f"meeting notes {index}", "manual")

        assert len(await store.get_relevant_contexts("meeting notes", limit=2)) == 2

    @pytest.mark.asyncio
    async def test_empty_query_returns_nothing(self, store):
        await store.add_context("anything", "manual")

        assert await store.get_relevant_contexts("?!") == []

    @pytest.mark.asyncio
    async def test_add_get_delete(self, store):
        record = await store.add_context("Booking link: https://cal.example.com", "outreach", tags=["link"])

        assert record.id.startswith("outreach-")
        fetched = await store.get_context(record.id)
        assert fetched.content == record.content
        assert fetched.metadata.tags == ["link"]

        assert await store.delete_context(record.id) is True
        assert await store.delete_context(record.id) is False
        assert await store.get_context(record.id) is None

    @pytest.mark.asyncio
    async def test_invalid_priority(self, store):
        with pytest.raises(ContextStoreError):
            await store.add_context("x", "manual", priority="urgent")

    @pytest.mark.asyncio
    async def test_update_merges_fields(self, store):
        record = await store.add_context("Booking link: https://cal.example.com", "outreach", tags=["link"])
        assert await store.get_relevant_contexts("booking") != []

        updated = await store.update_context(record.id, content="Pricing sheet attached", priority="high")

        assert updated.metadata.priority == ContextPriority.HIGH
        assert updated.metadata.tags == ["link"]
        assert updated.metadata.updated_at >= record.metadata.updated_at
        fetched = await store.get_context(record.id)
        assert fetched.content == "Pricing sheet attached"
        assert fetched.metadata.type == "outreach"
        assert await store.get_relevant_contexts("booking") == []
        assert [r.id for r in await store.get_relevant_contexts("pricing sheet")] == [record.id]

    @pytest.mark.asyncio
    async def test_update_missing_or_invalid(self, store):
        assert await store.update_context("missing", content="x") is None

        record = await store.add_context("x", "manual")
        with pytest.raises(ContextStoreError):
            await store.update_context(record.id, priority="urgent")

    @pytest.mark.asyncio
    async def test_seed_defaults_only_into_empty_store(self, store):
        assert await store.seed_default_contexts() == 6
        assert await store.seed_default_contexts() == 0

        stats = await store.stats()
        assert stats["total_contexts"] == 6
        assert stats["by_priority"] == {"high": 2, "medium": 3, "low": 1}
        job_search = await store.get_context("default-job_search")
        assert "interview" in job_search.metadata.tags

    @pytest.mark.asyncio
    async def test_seed_skipped_when_contexts_exist(self, store):
        await store.add_context("My own context", "manual")

        assert await store.seed_default_contexts() == 0
        assert (await store.stats())["total_contexts"] == 1

    @pytest.mark.asyncio
    async def test_stats_and_cache(self, store):
        await store.store_context(ContextRecord(
            "email-x", "Subject: hello", ContextMetadata("email", ContextPriority.MEDIUM)
        ))
        await store.add_context("hello world", "manual", priority="high")
        await store.get_relevant_contexts("hello")

        stats = await store.stats()
        assert stats["total_contexts"] == 2
        assert stats["by_type"] == {"email": 1, "manual": 1}
        assert stats["by_priority"] == {"medium": 1, "high": 1}
        assert stats["cached_terms"] == 2

        store.clear_cache()
        assert (await store.stats())["cached_terms"] == 0

    def test_extract_terms(self):
        assert extract_terms("Re: Q3 pricing, ok?") == frozenset({"pricing"})
