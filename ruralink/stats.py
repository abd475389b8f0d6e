"""Landing-page counters and their change-driven refresh."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from ruralink.backends.base import JobStore
from ruralink.core.errors import RuralinkError
from ruralink.realtime import JOBS, PROFILES, ChangeEvent, ChangeFeed, Subscription

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stats:
    active_workers: int = 0
    jobs_posted: int = 0
    success_rate: int = 0


def success_rate(closed: int, total: int) -> int:
    """Percentage of jobs closed, rounded half up; 0 when nothing is posted."""
    if total <= 0:
        return 0
    return int(math.floor(closed / total * 100 + 0.5))


def fetch_stats(store: JobStore, previous: Optional[Stats] = None) -> Stats:
    try:
        counts = store.counts_by_type()
    except RuralinkError as e:
        LOGGER.warning("stats refresh failed: %s", e)
        return previous or Stats()
    return Stats(
        active_workers=counts.workers,
        jobs_posted=counts.jobs,
        success_rate=success_rate(counts.closed_jobs, counts.jobs),
    )


class StatsWatcher:
    """Keeps :attr:`stats` current by refetching on profile and job changes."""

    def __init__(self, store: JobStore, feed: ChangeFeed):
        self.store = store
        self.feed = feed
        self.stats = Stats()
        self._subs: list[Subscription] = []

    def start(self) -> Stats:
        if not self._subs:
            self._subs = [
                self.feed.subscribe(PROFILES, self._on_change),
                self.feed.subscribe(JOBS, self._on_change),
            ]
        return self.refresh()

    def refresh(self) -> Stats:
        self.stats = fetch_stats(self.store, self.stats)
        return self.stats

    def _on_change(self, event: ChangeEvent) -> None:
        LOGGER.debug("stats refresh on %s %s", event.table, event.action)
        self.refresh()

    def stop(self) -> None:
        for sub in self._subs:
            sub.unsubscribe()
        self._subs = []

    close = stop

    def __enter__(self) -> "StatsWatcher":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
