"""Tests for per-source feed scheduling."""

from unittest.mock import Mock

from intel_triage.errors import FetchError
from intel_triage.models import Source
from intel_triage.pipeline import FeedScheduler, Ingestor, ProcessingQueue
from intel_triage.pipeline.scheduler import FAILURE_THRESHOLD, retry_delay

from conftest import RSS_THREE_ITEMS, RSS_TWO_ITEMS


def _scheduler(repo, timers, body=RSS_TWO_ITEMS):
    fetcher = Mock()
    fetcher.fetch.return_value = body
    ingestor = Ingestor(repo, fetcher, ProcessingQueue(repo))
    return FeedScheduler(repo, ingestor, timer_factory=timers, activation_delay=1.0), fetcher


class TestRetryDelay:
    def test_doubles_from_five_minutes(self):
        assert [retry_delay(n) for n in (1, 2, 3)] == [600, 1200, 2400]

    def test_capped_at_one_hour(self):
        assert retry_delay(4) == 3600
        assert retry_delay(20) == 3600


class TestTimers:
    def test_start_schedules_active_feeds(self, repo, timers, feed_source):
        repo.save_source(Source(name="Manual", url="manual://", kind="manual"))
        scheduler, _ = _scheduler(repo, timers)

        scheduler.start()

        assert len(timers.live) == 1
        timer = timers.live[0]
        assert timer.interval == 1.0
        assert timer.daemon is True
        assert timer.started is True
        assert scheduler.is_scheduled(feed_source.id)

    def test_one_timer_per_source(self, repo, timers, feed_source):
        scheduler, _ = _scheduler(repo, timers)

        scheduler.schedule(feed_source.id, 10)
        scheduler.schedule(feed_source.id, 20)

        assert timers.timers[0].cancelled is True
        assert [t.interval for t in timers.live] == [20]

    def test_stale_timer_is_ignored(self, repo, timers, feed_source):
        scheduler, fetcher = _scheduler(repo, timers)
        scheduler.start()
        stale = timers.timers[0]
        scheduler.schedule(feed_source.id, 5)

        stale.fire()

        fetcher.fetch.assert_not_called()
        assert scheduler.is_scheduled(feed_source.id)

    def test_stop_cancels_everything(self, repo, timers, feed_source):
        scheduler, _ = _scheduler(repo, timers)
        scheduler.start()

        scheduler.stop()

        assert timers.live == []
        assert not scheduler.is_scheduled(feed_source.id)


class TestRefresh:
    def test_success_reschedules_at_refresh_interval(self, repo, timers, feed_source):
        scheduler, _ = _scheduler(repo, timers)
        scheduler.start()

        timers.live[0].fire()

        assert [t.interval for t in timers.live] == [3600]
        source = repo.get_source(feed_source.id)
        assert source.consecutive_failures == 0
        assert source.last_item_count == 2
        assert source.feed_title == "Example Feed"
        assert source.last_successful_fetch is not None

    def test_refresh_now_deduplicates(self, repo, timers, feed_source):
        scheduler, fetcher = _scheduler(repo, timers)

        first = scheduler.refresh_now(feed_source.id)
        fetcher.fetch.return_value = RSS_THREE_ITEMS
        second = scheduler.refresh_now(feed_source.id)

        assert first.created == 2
        assert (second.created, second.duplicates) == (1, 2)
        assert len(repo.list_queue()) == 3
        # not started, so nothing is armed
        assert timers.timers == []

    def test_failures_back_off_and_flag_error(self, repo, timers, feed_source):
        scheduler, fetcher = _scheduler(repo, timers)
        fetcher.fetch.side_effect = FetchError(feed_source.url, "all 1 fetch strategies failed", status=503)
        scheduler.start()

        delays = []
        for _ in range(FAILURE_THRESHOLD):
            timers.live[0].fire()
            delays.append(timers.live[0].interval)

        assert delays == [600, 1200, 2400]
        source = repo.get_source(feed_source.id)
        assert source.status == "error"
        assert source.consecutive_failures == 3
        assert "fetch strategies failed" in source.last_error

    def test_recovery_resets_failures(self, repo, timers, feed_source):
        scheduler, fetcher = _scheduler(repo, timers)
        fetcher.fetch.side_effect = FetchError(feed_source.url, "down")
        scheduler.start()
        timers.live[0].fire()

        fetcher.fetch.side_effect = None
        timers.live[0].fire()

        source = repo.get_source(feed_source.id)
        assert source.consecutive_failures == 0
        assert source.status == "active"
        assert source.last_error is None

    def test_refresh_all_isolates_failures(self, repo, timers, feed_source):
        repo.save_source(Source(name="Broken", url="https://broken.example/rss"))
        scheduler, fetcher = _scheduler(repo, timers)

        def fetch(url):
            if "broken" in url:
                raise FetchError(url, "HTTP 500", status=500)
            return RSS_TWO_ITEMS

        fetcher.fetch.side_effect = fetch

        reports = sorted(scheduler.refresh_all(), key=lambda r: r.label)

        assert [r.label for r in reports] == ["Broken", "Example"]
        assert reports[0].errors == ["HTTP 500"]
        assert reports[1].created == 2


class TestActivation:
    def test_deactivate_stops_fetching(self, repo, timers, feed_source):
        scheduler, fetcher = _scheduler(repo, timers)
        scheduler.start()

        scheduler.deactivate(feed_source.id)

        assert timers.live == []
        assert scheduler.refresh_now(feed_source.id) is None
        fetcher.fetch.assert_not_called()
        assert repo.get_source(feed_source.id).status == "inactive"

    def test_deactivated_while_timer_pending(self, repo, timers, feed_source):
        scheduler, fetcher = _scheduler(repo, timers)
        scheduler.start()
        pending = timers.timers[0]

        scheduler.deactivate(feed_source.id)
        pending.fire()

        fetcher.fetch.assert_not_called()

    def test_activate_reschedules(self, repo, timers, feed_source):
        scheduler, _ = _scheduler(repo, timers)
        scheduler.start()
        scheduler.deactivate(feed_source.id)

        source = scheduler.activate(feed_source.id)

        assert source.active is True
        assert [t.interval for t in timers.live] == [1.0]

    def test_feed_status(self, repo, timers, feed_source):
        scheduler, _ = _scheduler(repo, timers)
        scheduler.start()

        rows = scheduler.feed_status()

        assert rows[0]["name"] == "Example"
        assert rows[0]["scheduled"] is True
        assert rows[0]["last_fetched"] is None
