"""
Statistics aggregation across all collaborators.

Unlike the pipeline, this is all-or-nothing: if any source fails the whole
snapshot fails with StatsUnavailableError rather than returning partial
numbers.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict

from onebox.exceptions import StatsUnavailableError

logger = logging.getLogger(__name__)

StatsSource = Callable[[], Any]


class StatsAggregator:
    """
    Collects named statistics sources into one snapshot.

    Sources may be plain callables or coroutine functions.
    """

    def __init__(self, sources: Dict[str, StatsSource]):
        self.sources = dict(sources)

    async def get_stats(self) -> Dict[str, Any]:
        """
        Query every source concurrently.

        Returns:
            Dict keyed by source name

        Raises:
            StatsUnavailableError: If any source fails
        """
        names = list(self.sources)
        results = await asyncio.gather(
            *(self._query(name, self.sources[name]) for name in names),
            return_exceptions=True
        )

        snapshot: Dict[str, Any] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.error(f"Statistics source {name} failed: {result}")
                raise StatsUnavailableError(name, str(result)) from result
            snapshot[name] = result
        return snapshot

    @staticmethod
    async def _query(name: str, source: StatsSource) -> Any:
        result = source()
        if inspect.isawaitable(result):
            result = await result
        return result
