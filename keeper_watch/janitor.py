"""Eviction of job records that stopped being reconciled."""

from __future__ import annotations

import logging
import time
from typing import Callable, List

from .metrics import WatchMetrics
from .state import JobStateStore

LOGGER = logging.getLogger(__name__)


class Janitor:
    """Removes records whose last update is older than ``max_age_seconds``."""

    def __init__(
        self,
        store: JobStateStore,
        max_age_seconds: float,
        *,
        metrics: WatchMetrics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be positive")
        self._store = store
        self._max_age = max_age_seconds
        self._metrics = metrics
        self._clock = clock

    def sweep(self) -> List[str]:
        now = self._clock()
        evicted: List[str] = []
        for record in self._store.values():
            if now - record.last_update_time > self._max_age:
                LOGGER.info("Removing inactive job: %s", record.address)
                self._store.delete(record.address)
                evicted.append(record.address)
        if self._metrics is not None:
            self._metrics.jobs_evicted.inc(len(evicted))
            self._metrics.tracked_jobs.set(len(self._store))
        return evicted


__all__ = ["Janitor"]
