"""
Test suite for the EmailPipeline orchestrator.

Covers stage ordering, per-stage failure isolation, the outer fallback
boundary, conditional notification and completion signalling. Every
collaborator is an AsyncMock so calls and arguments can be asserted.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import build_email
from onebox.events import EmailCategorized, EmailReceived, EventBus
from onebox.exceptions import CategorizationError, IndexingError
from onebox.models import FALLBACK_CATEGORY, ContextPriority, EmailCategory
from onebox.pipeline import PROCESSING_METRIC, EmailPipeline


def mock_metrics():
    metrics = MagicMock()
    metrics.persist = AsyncMock(return_value=True)
    return metrics


@pytest.fixture
def pipeline(categorizer, indexer, notifier, bus, context_store):
    pipe = EmailPipeline(
        categorizer=categorizer,
        indexer=indexer,
        notifier=notifier,
        bus=bus,
        context_store=context_store,
        metrics=mock_metrics(),
    )
    return pipe


class TestPipelineScenarios:
    """End-to-end runs of a single email through every stage."""

    @pytest.mark.asyncio
    async def test_interested_email_runs_every_stage(self, pipeline, categorizer, indexer,
                                                     context_store, notifier, bus, email):
        """
        Test the full happy path for an Interested email.

        Verifies that the email is indexed and annotated once, its context is
        stored with high priority, the notifier fires once and a completion
        metric carries the email id and category.
        """
        completed = []
        bus.subscribe(EmailCategorized, AsyncMock(side_effect=completed.append))

        outcome = await pipeline.process_email(email)

        assert outcome.category == EmailCategory.INTERESTED
        assert outcome.indexed is True
        assert outcome.context_stored is True
        assert outcome.notified is True
        assert outcome.fallback_used is False

        indexer.index_email.assert_awaited_once()
        indexed_email = indexer.index_email.await_args.args[0]
        assert indexed_email.id == "e1"
        assert indexed_email.category == EmailCategory.INTERESTED

        indexer.update_category.assert_awaited_once_with("e1", EmailCategory.INTERESTED)

        context_store.store_context.assert_awaited_once()
        record = context_store.store_context.await_args.args[0]
        assert record.id == "email-e1"
        assert record.metadata.priority == ContextPriority.HIGH
        assert record.metadata.tags == ["Interested", "acct1", "processed"]
        assert record.content.startswith("Subject: Pricing?\nFrom: a@b.com\nBody: ")

        notifier.notify.assert_awaited_once()
        assert notifier.notify.await_args.args[1] == EmailCategory.INTERESTED

        pipeline.metrics.metric.assert_called_once()
        name, duration, metadata = pipeline.metrics.metric.call_args.args
        assert name == PROCESSING_METRIC
        assert duration >= 0
        assert metadata == {"email_id": "e1", "category": "Interested", "account": "acct1"}
        pipeline.metrics.persist.assert_awaited_once()

        # The completion event is queued for its subscriber
        assert bus._subscriptions[EmailCategorized][0].queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_categorizer_failure_uses_fallback(self, pipeline, categorizer, indexer, notifier, email):
        """
        Test that a throwing categorizer does not stop the pipeline.

        Verifies that the fallback category is applied, indexing still
        happens once with that category and the notifier is never called.
        """
        categorizer.categorize.side_effect = CategorizationError("model down")

        outcome = await pipeline.process_email(email)

        assert outcome.category == FALLBACK_CATEGORY
        assert outcome.fallback_used is True
        indexer.index_email.assert_awaited_once()
        assert indexer.index_email.await_args.args[0].category == FALLBACK_CATEGORY
        notifier.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_label_maps_to_fallback(self, pipeline, categorizer, email):
        categorizer.categorize.return_value = "Maybe Later"

        outcome = await pipeline.process_email(email)

        assert outcome.category == FALLBACK_CATEGORY
        assert outcome.fallback_used is True

    @pytest.mark.asyncio
    async def test_string_label_is_parsed(self, pipeline, categorizer, notifier, email):
        categorizer.categorize.return_value = "Interested"

        outcome = await pipeline.process_email(email)

        assert outcome.category == EmailCategory.INTERESTED
        notifier.notify.assert_awaited_once()


class TestStageIsolation:
    """Failures inside one stage never abort the others."""

    @pytest.mark.asyncio
    async def test_index_failure_skips_annotation(self, pipeline, indexer, notifier, email):
        """
        Test that a failing indexer prevents category annotation.

        Verifies that update_category is never called while notification
        still proceeds for an Interested email.
        """
        indexer.index_email.side_effect = IndexingError("disk full")

        outcome = await pipeline.process_email(email)

        assert outcome.indexed is False
        indexer.update_category.assert_not_awaited()
        notifier.notify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_already_indexed_skips_annotation(self, pipeline, indexer, email):
        indexer.index_email.return_value = False

        outcome = await pipeline.process_email(email)

        assert outcome.indexed is False
        indexer.update_category.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_annotation_failure_is_swallowed(self, pipeline, indexer, notifier, email):
        indexer.update_category.side_effect = IndexingError("row locked")

        outcome = await pipeline.process_email(email)

        assert outcome.indexed is True
        notifier.notify.assert_awaited_once()
        assert outcome.fallback_used is False

    @pytest.mark.asyncio
    async def test_context_store_failure_is_swallowed(self, pipeline, context_store, notifier, email):
        context_store.store_context.side_effect = RuntimeError("store offline")

        outcome = await pipeline.process_email(email)

        assert outcome.context_stored is False
        notifier.notify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_notifier_failure_is_swallowed(self, pipeline, notifier, email):
        notifier.notify.side_effect = RuntimeError("slack down")

        outcome = await pipeline.process_email(email)

        assert outcome.notified is False
        assert outcome.dropped is False
        assert pipeline.stats()["processed"] == 1

    @pytest.mark.asyncio
    async def test_context_stage_skipped_without_store(self, categorizer, indexer, notifier, bus, email):
        pipe = EmailPipeline(categorizer, indexer, notifier, bus, context_store=None, metrics=mock_metrics())

        outcome = await pipe.process_email(email)

        assert outcome.context_stored is False
        assert outcome.indexed is True


class TestNotificationCondition:
    """Notification fires exactly for the priority category."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("category", [
        EmailCategory.MEETING_BOOKED,
        EmailCategory.NOT_INTERESTED,
        EmailCategory.SPAM,
        EmailCategory.OUT_OF_OFFICE,
    ])
    async def test_non_priority_categories_do_not_notify(self, pipeline, categorizer, notifier,
                                                         context_store, email, category):
        categorizer.categorize.return_value = category

        outcome = await pipeline.process_email(email)

        notifier.notify.assert_not_awaited()
        assert outcome.notified is False
        record = context_store.store_context.await_args.args[0]
        assert record.metadata.priority == ContextPriority.MEDIUM

    @pytest.mark.asyncio
    async def test_category_is_never_unset(self, pipeline, categorizer, email):
        """
        Test that every outcome carries a category.

        Verifies both the categorizer result and the fallback paths produce
        a concrete label.
        """
        for side_effect in (None, RuntimeError("boom")):
            categorizer.categorize.side_effect = side_effect
            outcome = await pipeline.process_email(email)
            assert isinstance(outcome.category, EmailCategory)


class TestOuterBoundary:
    """Failures that escape the stage guards."""

    @pytest.mark.asyncio
    async def test_escaped_error_forces_fallback_index(self, pipeline, indexer, bus, email):
        """
        Test the outer failure boundary.

        Verifies that an error raised outside the stage guards results in one
        bare indexing attempt with the fallback category.
        """
        bus.publish = MagicMock(side_effect=RuntimeError("bus broken"))

        outcome = await pipeline.process_email(email)

        assert outcome.category == FALLBACK_CATEGORY
        assert outcome.fallback_used is True
        assert outcome.dropped is False
        assert indexer.index_email.await_count == 2
        assert indexer.index_email.await_args.args[0].category == FALLBACK_CATEGORY
        assert pipeline.stats()["boundary_failures"] == 1

    @pytest.mark.asyncio
    async def test_failed_fallback_drops_email(self, pipeline, indexer, bus, email, caplog):
        bus.publish = MagicMock(side_effect=RuntimeError("bus broken"))
        indexer.index_email.side_effect = [True, IndexingError("still broken")]

        with caplog.at_level("ERROR"):
            outcome = await pipeline.process_email(email)

        assert outcome.dropped is True
        assert "dropped" in caplog.text
        stats = pipeline.stats()
        assert stats["dropped"] == 1
        assert stats["processed"] == 0


class TestPipelineWiring:
    """Integration with the event bus."""

    @pytest.mark.asyncio
    async def test_received_events_are_processed(self, pipeline, indexer):
        bus = EventBus()
        pipeline.bus = bus
        pipeline.attach(bus, concurrency=2)
        await bus.start()

        bus.publish(EmailReceived(email=build_email("e1")))
        bus.publish(EmailReceived(email=build_email("e2", subject="Follow up")))
        await bus.stop(drain=True)

        indexed_ids = sorted(call.args[0].id for call in indexer.index_email.await_args_list)
        assert indexed_ids == ["e1", "e2"]
        assert pipeline.stats()["processed"] == 2

    @pytest.mark.asyncio
    async def test_distinct_emails_run_concurrently(self, categorizer, indexer, notifier, bus):
        """
        Test that the pipeline holds no shared state between emails.

        Verifies that concurrent runs each keep their own category.
        """
        async def categorize(email):
            await asyncio.sleep(0.01 if email.id == "slow" else 0)
            return EmailCategory.INTERESTED if email.id == "slow" else EmailCategory.SPAM

        categorizer.categorize.side_effect = categorize
        pipe = EmailPipeline(categorizer, indexer, notifier, bus, metrics=mock_metrics())

        slow, fast = await asyncio.gather(
            pipe.process_email(build_email("slow")),
            pipe.process_email(build_email("fast")),
        )

        assert slow.category == EmailCategory.INTERESTED
        assert fast.category == EmailCategory.SPAM
        notifier.notify.assert_awaited_once()
        assert notifier.notify.await_args.args[0].id == "slow"
