"""
Performance metric recording.

Keeps rolling aggregates per metric name and logs every sample. Recording is
memory-only; when a metrics file is configured, ``persist()`` writes the
aggregates as JSON from a worker thread so the event loop never blocks on
disk I/O.
"""

import asyncio
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class PerformanceLogger:
    """Records named duration metrics with arbitrary metadata."""

    def __init__(self, metrics_file: Optional[str] = None):
        self.metrics_file = metrics_file
        self._lock = threading.Lock()
        self._write_lock = asyncio.Lock()
        self._dirty = False
        self.metrics: Dict[str, Dict[str, Any]] = {}
        if metrics_file:
            Path(metrics_file).parent.mkdir(parents=True, exist_ok=True)
            self.load_metrics()

    def load_metrics(self) -> None:
        try:
            with open(self.metrics_file, 'r') as f:
                self.metrics = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            self.metrics = {}

    def metric(self, name: str, duration_ms: float, metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Record one sample of a duration metric.

        Args:
            name: Metric name, e.g. ``email-processing``
            duration_ms: Measured duration in milliseconds
            metadata: Context for the sample (email id, category, account)
        """
        metadata = metadata or {}
        logger.info(
            f"Metric {name}: {duration_ms:.1f}ms "
            + " ".join(f"{key}={value}" for key, value in metadata.items())
        )

        with self._lock:
            entry = self.metrics.setdefault(name, {
                'count': 0,
                'total_ms': 0.0,
                'avg_ms': 0.0,
                'last': None
            })
            entry['count'] += 1
            entry['total_ms'] += duration_ms
            entry['avg_ms'] = entry['total_ms'] / entry['count']
            entry['last'] = {
                'timestamp': datetime.now(timezone.utc).isoformat(),
                'duration_ms': duration_ms,
                **metadata
            }
            self._dirty = True

    def _take_payload(self) -> Optional[str]:
        with self._lock:
            if not self._dirty:
                return None
            self._dirty = False
            return json.dumps(self.metrics, indent=2)

    def _write(self, payload: str) -> None:
        with open(self.metrics_file, 'w') as f:
            f.write(payload)

    async def persist(self) -> bool:
        """
        Write pending aggregates to the metrics file.

        Writes are serialised so an older snapshot never overwrites a newer
        one. A failed write is logged and retried on the next call.

        Returns:
            True when a file was written
        """
        if not self.metrics_file:
            return False
        async with self._write_lock:
            payload = self._take_payload()
            if payload is None:
                return False
            try:
                await asyncio.to_thread(self._write, payload)
            except OSError as e:
                logger.warning(f"Failed to persist metrics: {e}")
                with self._lock:
                    self._dirty = True
                return False
        return True

    def get(self, name: str) -> Dict[str, Any]:
        with self._lock:
            return dict(self.metrics.get(name, {}))

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: dict(entry) for name, entry in self.metrics.items()}
