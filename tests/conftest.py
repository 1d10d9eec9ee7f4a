"""
Shared fixtures for the email onebox test suite.

Collaborators are replaced with AsyncMock/MagicMock doubles so each component
is exercised in isolation; storage adapters run against in-memory SQLite.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from onebox.config import OneboxSettings
from onebox.events import EventBus
from onebox.models import Email, EmailAddress, EmailCategory, NotificationResult
from onebox.storage.database import Database
from onebox.utils.metrics import PerformanceLogger


def build_email(
    email_id: str = "e1",
    subject: str = "Pricing?",
    body: str = "Could you send over your pricing for the enterprise plan?",
    sender: str = "a@b.com",
    account: str = "acct1",
    **kwargs
) -> Email:
    return Email(
        id=email_id,
        subject=subject,
        body=body,
        senders=[EmailAddress(sender)],
        account=account,
        date=kwargs.pop("date", datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)),
        **kwargs
    )


@pytest.fixture
def email():
    return build_email()


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def settings():
    return OneboxSettings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        LOG_DIR=None,
        GROQ_API_KEY=None,
        SLACK_BOT_TOKEN=None,
        WEBHOOK_URL="",
        METRICS_FILE=None,
        CONTEXT_SEED_DEFAULTS=False,
    )


@pytest.fixture
def categorizer():
    mock = MagicMock()
    mock.categorize = AsyncMock(return_value=EmailCategory.INTERESTED)
    mock.health_check = AsyncMock(return_value=True)
    mock.stats = MagicMock(return_value={"enabled": True})
    return mock


@pytest.fixture
def indexer():
    mock = MagicMock()
    mock.index_email = AsyncMock(return_value=True)
    mock.update_category = AsyncMock(return_value=None)
    mock.get_by_id = AsyncMock(return_value=None)
    mock.search = AsyncMock()
    mock.stats = AsyncMock(return_value={"total": 0})
    mock.health_check = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def context_store():
    mock = MagicMock()
    mock.store_context = AsyncMock(return_value=None)
    mock.get_relevant_contexts = AsyncMock(return_value=[])
    mock.add_context = AsyncMock()
    mock.update_context = AsyncMock(return_value=None)
    mock.seed_default_contexts = AsyncMock(return_value=0)
    mock.stats = AsyncMock(return_value={"total_contexts": 0})
    mock.health_check = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.notify = AsyncMock(return_value=NotificationResult(slack=True, webhook=False))
    mock.send_test = AsyncMock(return_value=NotificationResult(slack=True, webhook=True))
    mock.stats = MagicMock(return_value={"slack": {}, "webhook": {}})
    mock.health_check = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def metrics():
    return PerformanceLogger()
