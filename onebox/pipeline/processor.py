"""
Email Pipeline Orchestrator

Drives each inbound email through categorization, indexing, category
annotation, context storage and conditional notification, then publishes a
completion event and records a latency metric.

Design Considerations:
- Every stage degrades gracefully: a stage failure is logged with the email
  id and stage name, its fallback applied, and the pipeline continues
- An outer failure boundary catches anything the stage guards miss, forces
  the fallback category and makes one bare indexing attempt
- Each run works on its own immutable Email value, so distinct emails can be
  processed concurrently without shared mutable state
- Notification is triggered only from inside the pipeline; the completion
  event is informational
"""

import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

from onebox.events import (
    ConnectionLost,
    ConnectionRestored,
    EmailCategorized,
    EmailReceived,
    EventBus,
)
from onebox.interfaces import Categorizer, ContextStore, EmailIndexer, Notifier
from onebox.models import (
    FALLBACK_CATEGORY,
    PRIORITY_CATEGORY,
    ContextRecord,
    Email,
    EmailCategory,
    PipelineOutcome,
)
from onebox.utils.metrics import PerformanceLogger

logger = logging.getLogger(__name__)

PROCESSING_METRIC = "email-processing"


class EmailPipeline:
    """
    Per-email enrichment pipeline.

    Args:
        categorizer: Assigns the email category
        indexer: Search index; idempotent by email id
        notifier: Alerts for priority emails
        bus: Receives the completion event
        context_store: Optional long-term context store; the stage is
            skipped when None
        metrics: Latency metric sink
    """

    def __init__(
        self,
        categorizer: Categorizer,
        indexer: EmailIndexer,
        notifier: Notifier,
        bus: EventBus,
        context_store: Optional[ContextStore] = None,
        metrics: Optional[PerformanceLogger] = None
    ):
        self.categorizer = categorizer
        self.indexer = indexer
        self.notifier = notifier
        self.bus = bus
        self.context_store = context_store
        self.metrics = metrics or PerformanceLogger()

        self._counter_lock = threading.Lock()
        self._counters = {
            "processed": 0,
            "fallback_categorized": 0,
            "boundary_failures": 0,
            "dropped": 0,
            "notified": 0,
            "total_duration_ms": 0.0,
        }

    def attach(self, bus: EventBus, concurrency: int = 1) -> None:
        """
        Subscribe the pipeline to ingestion events.

        Args:
            bus: Event bus the ingestion source publishes on
            concurrency: Emails processed at the same time
        """
        bus.subscribe(EmailReceived, self.handle_email_received, concurrency=concurrency, name="pipeline")
        bus.subscribe(ConnectionLost, self.handle_connection_lost, name="pipeline-connection-lost")
        bus.subscribe(ConnectionRestored, self.handle_connection_restored, name="pipeline-connection-restored")

    async def handle_email_received(self, event: EmailReceived) -> None:
        await self.process_email(event.email)

    async def handle_connection_lost(self, event: ConnectionLost) -> None:
        logger.warning(f"Connection lost for account {event.account_id}: {event.reason or 'unknown reason'}")

    async def handle_connection_restored(self, event: ConnectionRestored) -> None:
        logger.info(f"Connection restored for account {event.account_id}")

    async def process_email(self, email: Email) -> PipelineOutcome:
        """
        Run one email through every stage.

        Never raises: unexpected errors go through the outer fallback, which
        at worst logs the email as dropped.

        Args:
            email: Email as received from the ingestion source

        Returns:
            PipelineOutcome: Telemetry for this run
        """
        start_time = time.perf_counter()
        logger.info(f"Starting pipeline processing for email {email.id}")
        try:
            return await self._run(email, start_time)
        except Exception as e:
            logger.error(f"Pipeline error for {email.id}: {e}", exc_info=True)
            return await self._fallback(email, start_time)

    async def _run(self, email: Email, start_time: float) -> PipelineOutcome:
        # Stage 1: categorize
        category, fallback_used = await self._categorize(email)
        email = email.with_category(category)

        # Stage 2: index
        newly_indexed = await self._index(email)

        # Stage 3: annotate, only for a row written in this pass
        if newly_indexed:
            await self._annotate(email, category)

        # Stage 4: context store
        context_stored = False
        if self.context_store is not None:
            context_stored = await self._store_context(email, category)

        # Stage 5: notify
        notified = False
        if category == PRIORITY_CATEGORY:
            notified = await self._notify(email, category)
        else:
            logger.debug(f"Skipping notification for {email.id} ({category.value})")

        # Stage 6: completion
        self.bus.publish(EmailCategorized(email=email, category=category))
        duration_ms = self._elapsed_ms(start_time)
        self.metrics.metric(PROCESSING_METRIC, duration_ms, {
            "email_id": email.id,
            "category": category.value,
            "account": email.account,
        })
        await self.metrics.persist()

        outcome = PipelineOutcome(
            email_id=email.id,
            category=category,
            indexed=bool(newly_indexed),
            context_stored=context_stored,
            notified=notified,
            duration_ms=duration_ms,
            fallback_used=fallback_used,
        )
        self._record(outcome)
        logger.info(
            f"Successfully processed email {email.id} as {category.value} "
            f"(indexed={outcome.indexed}, context={context_stored}, notified={notified}, "
            f"{duration_ms:.1f}ms)"
        )
        return outcome

    async def _categorize(self, email: Email) -> Tuple[EmailCategory, bool]:
        try:
            category = await self.categorizer.categorize(email)
        except Exception as e:
            logger.warning(f"[categorize] failed for {email.id}, using {FALLBACK_CATEGORY.value}: {e}")
            return FALLBACK_CATEGORY, True

        if not isinstance(category, EmailCategory):
            parsed = EmailCategory.parse(category)
            if parsed is None:
                logger.warning(f"[categorize] unknown label {category!r} for {email.id}, using fallback")
                return FALLBACK_CATEGORY, True
            category = parsed
        return category, False

    async def _index(self, email: Email) -> Optional[bool]:
        """Returns the newly-indexed flag, or None when indexing failed."""
        try:
            return bool(await self.indexer.index_email(email))
        except Exception as e:
            logger.error(f"[index] failed for {email.id}: {e}")
            return None

    async def _annotate(self, email: Email, category: EmailCategory) -> None:
        try:
            await self.indexer.update_category(email.id, category)
        except Exception as e:
            logger.error(f"[annotate] failed for {email.id}: {e}")

    async def _store_context(self, email: Email, category: EmailCategory) -> bool:
        try:
            record = ContextRecord.for_email(email, category)
            await self.context_store.store_context(record)
            return True
        except Exception as e:
            logger.error(f"[context] failed for {email.id}: {e}")
            return False

    async def _notify(self, email: Email, category: EmailCategory) -> bool:
        try:
            result = await self.notifier.notify(email, category)
        except Exception as e:
            logger.error(f"[notify] failed for {email.id}: {e}")
            return False
        return bool(getattr(result, "sent", result))

    async def _fallback(self, email: Email, start_time: float) -> PipelineOutcome:
        email = email.with_category(FALLBACK_CATEGORY)
        outcome = PipelineOutcome(
            email_id=email.id,
            category=FALLBACK_CATEGORY,
            fallback_used=True,
        )
        with self._counter_lock:
            self._counters["boundary_failures"] += 1

        try:
            outcome.indexed = bool(await self.indexer.index_email(email))
        except Exception as e:
            logger.error(f"Email {email.id} dropped: fallback indexing failed: {e}", exc_info=True)
            outcome.dropped = True

        outcome.duration_ms = self._elapsed_ms(start_time)
        self._record(outcome)
        return outcome

    def _record(self, outcome: PipelineOutcome) -> None:
        with self._counter_lock:
            if outcome.dropped:
                self._counters["dropped"] += 1
                return
            self._counters["processed"] += 1
            self._counters["total_duration_ms"] += outcome.duration_ms
            if outcome.fallback_used:
                self._counters["fallback_categorized"] += 1
            if outcome.notified:
                self._counters["notified"] += 1

    def stats(self) -> Dict[str, Any]:
        with self._counter_lock:
            counters = dict(self._counters)
        processed = counters.pop("processed")
        total_ms = counters.pop("total_duration_ms")
        return {
            "processed": processed,
            **counters,
            "average_duration_ms": round(total_ms / processed, 2) if processed else 0.0,
        }

    @staticmethod
    def _elapsed_ms(start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000
