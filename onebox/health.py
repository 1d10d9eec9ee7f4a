"""
Health aggregation across all collaborators.

Checks run concurrently and each is bounded by a timeout, so one hanging
collaborator can never hold up the others or the caller.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict

from onebox.models import HealthReport

logger = logging.getLogger(__name__)

HealthCheck = Callable[[], Awaitable[bool]]


class HealthAggregator:
    """
    Combines named health checks into a single report.

    Args:
        checks: Mapping of collaborator name to its async health check
        timeout: Upper bound in seconds for each check
    """

    def __init__(self, checks: Dict[str, HealthCheck], timeout: float = 5.0):
        self.checks = dict(checks)
        self.timeout = timeout

    def register(self, name: str, check: HealthCheck) -> None:
        self.checks[name] = check

    async def check_health(self) -> HealthReport:
        """
        Run every check and build the report.

        A check that raises, times out, or returns anything other than True
        is reported as False. Every registered name is always present.

        Returns:
            HealthReport: Per-collaborator results and the overall verdict
        """
        names = list(self.checks)
        results = await asyncio.gather(*(self._run_check(name, self.checks[name]) for name in names))
        report = HealthReport(services=dict(zip(names, results)))
        if not report.healthy:
            failing = [name for name, ok in report.services.items() if not ok]
            logger.warning(f"Health check degraded: {', '.join(failing)}")
        return report

    async def _run_check(self, name: str, check: HealthCheck) -> bool:
        try:
            result = await asyncio.wait_for(check(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Health check {name} timed out after {self.timeout}s")
            return False
        except Exception as e:
            logger.warning(f"Health check {name} failed: {e}")
            return False
        return result is True
