"""
Tests for health and statistics aggregation.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from onebox.exceptions import StatsUnavailableError
from onebox.health import HealthAggregator
from onebox.stats import StatsAggregator


class TestHealthAggregator:

    @pytest.mark.asyncio
    async def test_all_healthy(self):
        aggregator = HealthAggregator({
            "ingestion": AsyncMock(return_value=True),
            "indexer": AsyncMock(return_value=True),
        })

        report = await aggregator.check_health()

        assert report.healthy is True
        assert report.status == "ok"
        assert report.services == {"ingestion": True, "indexer": True}

    @pytest.mark.asyncio
    async def test_throwing_check_is_reported_false(self):
        """
        Test check failure handling.

        Verifies that a raising check and a False check both yield False
        entries while the remaining checks keep their own results.
        """
        aggregator = HealthAggregator({
            "ingestion": AsyncMock(side_effect=ConnectionError("imap down")),
            "categorizer": AsyncMock(return_value=False),
            "indexer": AsyncMock(return_value=True),
        })

        report = await aggregator.check_health()

        assert report.healthy is False
        assert report.status == "degraded"
        assert report.services == {"ingestion": False, "categorizer": False, "indexer": True}

    @pytest.mark.asyncio
    async def test_non_boolean_result_counts_as_false(self):
        aggregator = HealthAggregator({"notifier": AsyncMock(return_value="yes")})

        report = await aggregator.check_health()

        assert report.services == {"notifier": False}

    @pytest.mark.asyncio
    async def test_hanging_check_times_out(self):
        """
        Test the per-check timeout.

        Verifies that a check that never returns is reported False without
        holding up the other checks.
        """
        async def hang():
            await asyncio.sleep(10)
            return True

        aggregator = HealthAggregator(
            {"slow": hang, "fast": AsyncMock(return_value=True)},
            timeout=0.05,
        )

        report = await asyncio.wait_for(aggregator.check_health(), timeout=1.0)

        assert report.services == {"slow": False, "fast": True}

    @pytest.mark.asyncio
    async def test_register_adds_check(self):
        aggregator = HealthAggregator({})
        aggregator.register("chat", AsyncMock(return_value=True))

        report = await aggregator.check_health()

        assert report.to_dict()["services"] == {"chat": True}


class TestStatsAggregator:

    @pytest.mark.asyncio
    async def test_collects_sync_and_async_sources(self):
        aggregator = StatsAggregator({
            "emails": AsyncMock(return_value={"total": 3}),
            "notifications": MagicMock(return_value={"slack": {"sent": 1}}),
        })

        stats = await aggregator.get_stats()

        assert stats == {"emails": {"total": 3}, "notifications": {"slack": {"sent": 1}}}

    @pytest.mark.asyncio
    async def test_any_failure_raises(self):
        aggregator = StatsAggregator({
            "emails": AsyncMock(return_value={"total": 3}),
            "vector": AsyncMock(side_effect=RuntimeError("store offline")),
        })

        with pytest.raises(StatsUnavailableError) as exc_info:
            await aggregator.get_stats()

        assert exc_info.value.source == "vector"

    @pytest.mark.asyncio
    async def test_sync_failure_raises(self):
        aggregator = StatsAggregator({"chat": MagicMock(side_effect=KeyError("sessions"))})

        with pytest.raises(StatsUnavailableError):
            await aggregator.get_stats()
