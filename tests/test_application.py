"""
Integration tests for the application container.

Uses the real adapters with in-memory SQLite and no external credentials, so
categorization runs on keyword rules and no notification channel is enabled.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from conftest import build_email
from onebox.application import OneboxApplication
from onebox.events import EmailReceived
from onebox.models import EmailCategory, EmailSearchQuery


@pytest.fixture
def onebox(settings):
    return OneboxApplication(settings)


class TestOneboxApplication:

    @pytest.mark.asyncio
    async def test_lifecycle_and_health(self, onebox):
        """
        Test startup, health and shutdown with nothing configured.

        Verifies that every collaborator reports healthy and provisioning
        finds no accounts.
        """
        report = await onebox.initialize(environ={})
        try:
            assert report.registered == []
            assert onebox.bus.running is True

            health = await onebox.check_health()
            assert health.healthy is True
            assert set(health.services) == {
                "ingestion", "categorizer", "indexer", "notifier", "chat", "context_store",
            }
        finally:
            await onebox.shutdown()

        assert onebox.bus.running is False

    @pytest.mark.asyncio
    async def test_received_email_flows_into_index_and_stats(self, onebox):
        await onebox.initialize(environ={})
        try:
            onebox.bus.publish(EmailReceived(email=build_email(
                "m1", subject="Automatic reply: Pricing", body="I am on vacation"
            )))
            onebox.bus.publish(EmailReceived(email=build_email("m2")))
            await onebox.bus.stop(drain=True)

            stored = await onebox.indexer.get_by_id("m1")
            assert stored.category == EmailCategory.OUT_OF_OFFICE
            assert (await onebox.indexer.get_by_id("m2")).category == EmailCategory.SPAM

            contexts = await onebox.context_store.list_contexts()
            assert sorted(record.id for record in contexts) == ["email-m1", "email-m2"]

            stats = await onebox.get_stats()
            assert stats["emails"]["total"] == 2
            assert stats["vector"]["total_contexts"] == 2
            assert stats["pipeline"]["processed"] == 2
            assert stats["connections"] == {}
            assert stats["ai"]["llm_configured"] is False
            assert set(stats) == {"emails", "vector", "notifications", "connections", "chat", "ai", "pipeline"}

            page = await onebox.indexer.search(EmailSearchQuery(category=EmailCategory.OUT_OF_OFFICE))
            assert [email.id for email in page.data] == ["m1"]
        finally:
            await onebox.shutdown()

    def test_context_store_can_be_disabled(self, settings):
        settings.CONTEXT_STORE_ENABLED = False
        onebox = OneboxApplication(settings)

        assert onebox.context_store is None
        assert "context_store" not in onebox.health.checks
        assert onebox.stats.sources["vector"]() == {"enabled": False}

    @pytest.mark.asyncio
    async def test_initialize_seeds_default_contexts(self, settings):
        settings.CONTEXT_SEED_DEFAULTS = True
        onebox = OneboxApplication(settings)

        await onebox.initialize(environ={})
        try:
            stats = await onebox.context_store.stats()
            assert stats["total_contexts"] == 6
            assert await onebox.context_store.get_context("default-sales") is not None
        finally:
            await onebox.shutdown()

    @pytest.mark.asyncio
    async def test_injected_collaborators_are_used(self, settings, categorizer, indexer, notifier, context_store):
        onebox = OneboxApplication(
            settings,
            categorizer=categorizer,
            indexer=indexer,
            notifier=notifier,
            context_store=context_store,
        )

        assert onebox.database is None
        assert onebox.pipeline.categorizer is categorizer

        outcome = await onebox.pipeline.process_email(build_email())
        assert outcome.notified is True
        notifier.notify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fatal_loop_errors_stop_the_loop(self, onebox):
        loop = MagicMock()
        onebox.install_exception_handler(loop)
        handler = loop.set_exception_handler.call_args.args[0]

        handler(loop, {"message": "task crashed", "exception": ValueError("bad")})
        loop.stop.assert_not_called()

        handler(loop, {"message": "out of memory", "exception": MemoryError()})
        loop.stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_installs_handler_on_running_loop(self, onebox):
        await onebox.initialize(environ={})
        try:
            assert asyncio.get_running_loop().get_exception_handler() is not None
        finally:
            await onebox.shutdown()
