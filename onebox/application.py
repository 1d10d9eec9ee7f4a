"""
Application container and lifecycle.

Builds every collaborator once from settings (or accepts ready-made ones,
which is how tests substitute doubles), wires the pipeline to the event bus
and hands explicit references to the API layer. There are no module-level
service singletons.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from onebox.categorization.categorizer import GroqCategorizer
from onebox.chat.service import ChatService
from onebox.config.settings import OneboxSettings, load_account_descriptors
from onebox.context.store import SqlContextStore
from onebox.events import EventBus
from onebox.exceptions import ContextStoreError
from onebox.health import HealthAggregator
from onebox.indexing.email_index import SqlEmailIndex
from onebox.ingestion.imap_source import ImapIngestionSource
from onebox.integrations.groq.client import EnhancedGroqClient
from onebox.interfaces import (
    Categorizer,
    ChatBackend,
    ContextStore,
    EmailIndexer,
    IngestionSource,
    Notifier,
)
from onebox.models import HealthReport
from onebox.notifications.service import NotificationService
from onebox.pipeline.processor import EmailPipeline
from onebox.provisioning import AccountProvisioner, ProviderPolicy, ProvisioningReport
from onebox.stats import StatsAggregator
from onebox.storage.database import Database
from onebox.utils.metrics import PerformanceLogger

logger = logging.getLogger(__name__)

FATAL_LOOP_ERRORS = (MemoryError, SystemError)


class OneboxApplication:
    """
    Owns every collaborator and the service lifecycle.

    Any collaborator passed in is used as-is; the rest are built from
    ``settings``.
    """

    def __init__(
        self,
        settings: OneboxSettings,
        *,
        bus: Optional[EventBus] = None,
        database: Optional[Database] = None,
        source: Optional[IngestionSource] = None,
        categorizer: Optional[Categorizer] = None,
        indexer: Optional[EmailIndexer] = None,
        context_store: Optional[ContextStore] = None,
        notifier: Optional[Notifier] = None,
        chat: Optional[ChatBackend] = None,
        metrics: Optional[PerformanceLogger] = None
    ):
        self.settings = settings
        self.bus = bus or EventBus()
        self.metrics = metrics or PerformanceLogger(settings.METRICS_FILE)

        needs_database = indexer is None or (context_store is None and settings.CONTEXT_STORE_ENABLED)
        self.database = database or (Database(settings.DATABASE_URL) if needs_database else None)

        self.groq_client = self._build_groq_client(settings)

        self.source = source or ImapIngestionSource(
            self.bus,
            poll_interval=settings.IMAP_POLL_INTERVAL_SECONDS,
            reconnect_delay=settings.IMAP_RECONNECT_DELAY_SECONDS,
            timeout=settings.IMAP_TIMEOUT_SECONDS,
            history_days=settings.IMAP_HISTORY_DAYS,
        )
        self.categorizer = categorizer or GroqCategorizer(
            client=self.groq_client,
            enabled=settings.AI_CATEGORIZATION_ENABLED,
            daily_quota=settings.AI_DAILY_QUOTA,
            retry_attempts=settings.AI_RETRY_ATTEMPTS,
        )
        self.indexer = indexer or SqlEmailIndex(self.database)
        if context_store is not None:
            self.context_store = context_store
        elif settings.CONTEXT_STORE_ENABLED:
            self.context_store = SqlContextStore(self.database)
        else:
            self.context_store = None
        self.notifier = notifier or NotificationService(
            slack_token=settings.secret(settings.SLACK_BOT_TOKEN),
            slack_channel=settings.SLACK_CHANNEL,
            slack_enabled=settings.SLACK_ENABLED,
            webhook_url=settings.WEBHOOK_URL,
            webhook_enabled=settings.WEBHOOK_ENABLED,
            webhook_retry_attempts=settings.WEBHOOK_RETRY_ATTEMPTS,
            webhook_timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
        )
        self.chat = chat or ChatService(
            self.groq_client,
            self.indexer,
            max_age_hours=settings.CHAT_SESSION_MAX_AGE_HOURS,
        )

        self.pipeline = EmailPipeline(
            categorizer=self.categorizer,
            indexer=self.indexer,
            notifier=self.notifier,
            bus=self.bus,
            context_store=self.context_store,
            metrics=self.metrics,
        )
        self.pipeline.attach(self.bus, concurrency=settings.PIPELINE_CONCURRENCY)

        self.provisioner = AccountProvisioner(
            self.source,
            ProviderPolicy(settings.excluded_providers),
        )

        checks = {
            "ingestion": self.source.health_check,
            "categorizer": self.categorizer.health_check,
            "indexer": self.indexer.health_check,
            "notifier": self.notifier.health_check,
            "chat": self.chat.health_check,
        }
        if self.context_store is not None:
            checks["context_store"] = self.context_store.health_check
        self.health = HealthAggregator(checks, timeout=settings.HEALTH_CHECK_TIMEOUT_SECONDS)

        self.stats = StatsAggregator({
            "emails": self.indexer.stats,
            "vector": self.context_store.stats if self.context_store else self._context_store_disabled,
            "notifications": self.notifier.stats,
            "connections": self.source.connection_status,
            "chat": self.chat.stats,
            "ai": self.categorizer.stats,
            "pipeline": self.pipeline.stats,
        })

        self._cleanup_task: Optional[asyncio.Task] = None
        self.initialized = False

    @staticmethod
    def _build_groq_client(settings: OneboxSettings) -> Optional[EnhancedGroqClient]:
        api_key = settings.secret(settings.GROQ_API_KEY)
        if not api_key:
            logger.warning("GROQ_API_KEY not set; categorization runs on keyword rules only and chat is disabled")
            return None
        return EnhancedGroqClient(
            api_key=api_key,
            model=settings.GROQ_MODEL,
            metrics_file=str(Path(settings.METRICS_FILE).with_name("groq_metrics.json")) if settings.METRICS_FILE else None,
        )

    @staticmethod
    def _context_store_disabled() -> Dict[str, Any]:
        return {"enabled": False}

    async def initialize(self, environ: Optional[Mapping[str, str]] = None) -> ProvisioningReport:
        """
        Start the service.

        Starts the event bus, creates storage tables, seeds default contexts
        into an empty store, provisions the accounts found in the environment
        and schedules chat session cleanup.

        Args:
            environ: Mapping to read account tuples from (defaults to ``os.environ``)

        Returns:
            ProvisioningReport: Outcome of account provisioning
        """
        logger.info("Initializing email onebox")
        self.install_exception_handler(asyncio.get_running_loop())

        if self.database is not None:
            await asyncio.to_thread(self.database.init_db)
        if self.context_store is not None and self.settings.CONTEXT_SEED_DEFAULTS:
            try:
                await self.context_store.seed_default_contexts()
            except ContextStoreError as e:
                logger.error(f"Seeding default contexts failed: {e}")
        await self.bus.start()

        report = await self.provisioner.provision(load_account_descriptors(environ))

        self._cleanup_task = asyncio.create_task(self._cleanup_chat_sessions(), name="chat-cleanup")
        self.initialized = True
        logger.info("✅ Email onebox initialized")
        return report

    async def shutdown(self) -> None:
        """Stop ingestion, drain the event bus and release resources."""
        logger.info("Shutting down email onebox")
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            await asyncio.gather(self._cleanup_task, return_exceptions=True)
            self._cleanup_task = None

        await self.source.shutdown()
        await self.bus.stop(drain=True)
        if self.context_store is not None:
            self.context_store.clear_cache()
        if self.database is not None:
            self.database.dispose()
        self.initialized = False
        logger.info("Email onebox shut down")

    async def check_health(self) -> HealthReport:
        return await self.health.check_health()

    async def get_stats(self) -> Dict[str, Any]:
        return await self.stats.get_stats()

    def install_exception_handler(self, loop: asyncio.AbstractEventLoop) -> None:
        """
        Log unhandled asyncio errors; stop the loop on runtime-level faults.

        Args:
            loop: Event loop to install the handler on
        """
        def handle_exception(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
            exception = context.get("exception")
            message = context.get("message", "Unhandled asyncio error")
            if isinstance(exception, FATAL_LOOP_ERRORS):
                logger.critical(f"Fatal runtime error, stopping: {message}", exc_info=exception)
                loop.stop()
                return
            logger.error(f"Unhandled asyncio error: {message}", exc_info=exception)

        loop.set_exception_handler(handle_exception)

    async def _cleanup_chat_sessions(self) -> None:
        interval = self.settings.CHAT_CLEANUP_INTERVAL_HOURS * 3600
        while True:
            await asyncio.sleep(interval)
            try:
                self.chat.cleanup_old_sessions()
            except Exception as e:
                logger.error(f"Chat session cleanup failed: {e}")
