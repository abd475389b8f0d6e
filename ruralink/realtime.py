"""In-process change feed.

Backends publish a :class:`ChangeEvent` after every successful mutation; the
stats watcher and the CLI subscribe per table.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Literal, Optional

LOGGER = logging.getLogger(__name__)

PROFILES = "profiles"
JOBS = "jobs"
APPLICATIONS = "job_applications"
ALL_TABLES = "*"

Action = Literal["insert", "update", "delete"]


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    action: Action
    record_id: Optional[str] = None


Listener = Callable[[ChangeEvent], None]


class Subscription:
    def __init__(self, feed: "ChangeFeed", table: str, listener: Listener):
        self._feed = feed
        self.table = table
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._feed._remove(self)
            self.active = False


class ChangeFeed:
    def __init__(self) -> None:
        self._listeners: Dict[str, List[Subscription]] = {}

    def subscribe(self, table: str, listener: Listener) -> Subscription:
        sub = Subscription(self, table, listener)
        self._listeners.setdefault(table, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._listeners.get(sub.table, [])
        if sub in subs:
            subs.remove(sub)

    def listener_count(self, table: Optional[str] = None) -> int:
        if table is None:
            return sum(len(v) for v in self._listeners.values())
        return len(self._listeners.get(table, []))

    def publish(self, event: ChangeEvent) -> None:
        targets = list(self._listeners.get(event.table, [])) + list(self._listeners.get(ALL_TABLES, []))
        for sub in targets:
            try:
                sub.listener(event)
            except Exception:
                # one broken listener must not starve the others
                LOGGER.exception("change listener failed table=%s action=%s", event.table, event.action)
