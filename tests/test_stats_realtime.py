import unittest
from unittest import mock

from ruralink.core.errors import TransientError
from ruralink.core.types import Counts
from ruralink.realtime import ALL_TABLES, JOBS, PROFILES, ChangeEvent, ChangeFeed
from ruralink.stats import Stats, StatsWatcher, fetch_stats, success_rate


class SuccessRateTests(unittest.TestCase):
    def test_no_jobs(self):
        self.assertEqual(success_rate(0, 0), 0)

    def test_rounds_half_up(self):
        self.assertEqual(success_rate(1, 8), 13)  # 12.5
        self.assertEqual(success_rate(1, 3), 33)
        self.assertEqual(success_rate(2, 3), 67)
        self.assertEqual(success_rate(5, 5), 100)


class FetchStatsTests(unittest.TestCase):
    def test_maps_counts(self):
        store = mock.Mock()
        store.counts_by_type.return_value = Counts(workers=40, jobs=10, closed_jobs=4)
        self.assertEqual(fetch_stats(store), Stats(active_workers=40, jobs_posted=10, success_rate=40))

    def test_failure_keeps_previous(self):
        store = mock.Mock()
        store.counts_by_type.side_effect = TransientError("down")
        previous = Stats(1, 2, 50)
        self.assertIs(fetch_stats(store, previous), previous)
        self.assertEqual(fetch_stats(store), Stats())


class ChangeFeedTests(unittest.TestCase):
    def test_table_and_wildcard_listeners(self):
        feed = ChangeFeed()
        jobs, everything = [], []
        feed.subscribe(JOBS, jobs.append)
        feed.subscribe(ALL_TABLES, everything.append)

        feed.publish(ChangeEvent(JOBS, "insert", "j1"))
        feed.publish(ChangeEvent(PROFILES, "insert", "p1"))

        self.assertEqual([e.record_id for e in jobs], ["j1"])
        self.assertEqual([e.record_id for e in everything], ["j1", "p1"])

    def test_broken_listener_does_not_starve_others(self):
        feed = ChangeFeed()
        seen = []
        feed.subscribe(JOBS, mock.Mock(side_effect=RuntimeError("boom")))
        feed.subscribe(JOBS, seen.append)
        with self.assertLogs("ruralink.realtime", level="ERROR"):
            feed.publish(ChangeEvent(JOBS, "delete", "j1"))
        self.assertEqual(len(seen), 1)

    def test_unsubscribe_is_idempotent(self):
        feed = ChangeFeed()
        sub = feed.subscribe(JOBS, lambda e: None)
        sub.unsubscribe()
        sub.unsubscribe()
        self.assertEqual(feed.listener_count(), 0)


class StatsWatcherTests(unittest.TestCase):
    def test_refreshes_on_profile_and_job_changes(self):
        feed = ChangeFeed()
        store = mock.Mock()
        store.counts_by_type.side_effect = [
            Counts(workers=1, jobs=0, closed_jobs=0),
            Counts(workers=2, jobs=0, closed_jobs=0),
            Counts(workers=2, jobs=1, closed_jobs=1),
        ]
        with StatsWatcher(store, feed) as watcher:
            self.assertEqual(watcher.stats.active_workers, 1)
            feed.publish(ChangeEvent(PROFILES, "insert", "p"))
            self.assertEqual(watcher.stats.active_workers, 2)
            feed.publish(ChangeEvent("job_applications", "insert", "a"))
            self.assertEqual(store.counts_by_type.call_count, 2)
            feed.publish(ChangeEvent(JOBS, "update", "j"))
            self.assertEqual(watcher.stats, Stats(active_workers=2, jobs_posted=1, success_rate=100))

        self.assertEqual(feed.listener_count(), 0)
        feed.publish(ChangeEvent(JOBS, "insert", "j2"))
        self.assertEqual(store.counts_by_type.call_count, 3)


if __name__ == "__main__":
    unittest.main()
