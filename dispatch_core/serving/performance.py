"""
Per-backend rolling performance statistics.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, Optional

from dispatch_core.serving.models import BackendPerformance

logger = logging.getLogger(__name__)


def running_average(current: float, sample: float, count: int) -> float:
    """Fold ``sample`` into an average over ``count`` samples (count includes it)."""
    return (current * (count - 1) + sample) / count


class PerformanceTracker:
    """
    Tracks usage count, average latency and success rate per backend.

    Statistics only move forward: a recorded call is never rolled back.
    """

    def __init__(self):
        self._stats: Dict[str, BackendPerformance] = {}

    def record(self, name: str, latency_ms: float, succeeded: bool) -> BackendPerformance:
        current = self._stats.get(name) or BackendPerformance(
            backend_name=name, success_rate=0.0
        )
        count = current.usage_count + 1

        updated = BackendPerformance(
            backend_name=name,
            usage_count=count,
            average_latency_ms=running_average(
                current.average_latency_ms, float(latency_ms), count
            ),
            success_rate=running_average(
                current.success_rate, 1.0 if succeeded else 0.0, count
            ),
            last_used=datetime.now(),
        )
        self._stats[name] = updated

        if not succeeded:
            logger.debug(
                f"Backend {name} failure recorded "
                f"(success_rate={updated.success_rate:.2f}, n={count})"
            )
        return updated

    def snapshot(self, name: str) -> Optional[BackendPerformance]:
        """Stats for ``name``, or None if it was never recorded."""
        return self._stats.get(name)

    def performance_for(self, name: str) -> BackendPerformance:
        """Stats for ``name``, defaulting to an untried backend."""
        return self._stats.get(name) or BackendPerformance(backend_name=name)

    def snapshot_all(
        self, names: Optional[Iterable[str]] = None
    ) -> Dict[str, BackendPerformance]:
        if names is None:
            return dict(self._stats)
        return {name: self.performance_for(name) for name in names}

    def reset(self, name: Optional[str] = None) -> None:
        if name is None:
            self._stats.clear()
        else:
            self._stats.pop(name, None)

    def get_stats(self) -> Dict[str, Dict[str, object]]:
        return {name: perf.to_dict() for name, perf in self._stats.items()}


__all__ = ["PerformanceTracker", "running_average"]
