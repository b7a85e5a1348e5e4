"""Tests for the classification worker and worker pool."""

import json
import time
from unittest.mock import Mock, patch

from sqlalchemy.exc import OperationalError

from intel_triage.errors import InvalidResponse, ProviderError
from intel_triage.pipeline import ProcessingQueue, QueueWorker, ReviewWorkflow, WorkerPool
from intel_triage.processors import ClassificationService
from intel_triage.processors.ai import RateLimiter


def _worker(repo, service=None, clock=None):
    kwargs = {"clock": clock} if clock else {}
    queue = ProcessingQueue(repo, **kwargs)
    review = ReviewWorkflow(repo)
    service = service or ClassificationService(repo, None, RateLimiter(100, 60.0, 0.0))
    return QueueWorker(queue, service, review), queue, review


class TestQueueWorker:
    def test_relevant_entry_goes_to_review(self, repo):
        worker, queue, review = _worker(repo)
        entry = queue.enqueue_content("Ukrainian military forces near Kharkiv repelled a Russian offensive")

        processed = worker.process_next()

        assert processed.id == entry.id
        assert processed.status == "review"
        assert processed.classification.category == "ukraine"
        pending = review.pending()
        assert [i.queue_entry_id for i in pending] == [entry.id]

    def test_nothing_to_do(self, repo):
        worker, _, _ = _worker(repo)

        assert worker.process_next() is None

    def test_provider_error_schedules_retry(self, repo, clock):
        service = Mock()
        service.classify.side_effect = ProviderError("quota exceeded")
        worker, queue, _ = _worker(repo, service, clock)
        entry = queue.enqueue_content("text")

        result = worker.process_next()

        assert result.status == "pending"
        assert result.attempts == 1
        assert result.last_error == "quota exceeded"

    def test_invalid_response_counts_as_attempt(self, repo, clock):
        service = Mock()
        service.classify.side_effect = InvalidResponse("no JSON")
        worker, queue, _ = _worker(repo, service, clock)
        queue.enqueue_content("text")

        assert worker.process_next().attempts == 1

    def test_unexpected_error_does_not_strand_entry(self, repo, clock):
        service = Mock()
        service.classify.side_effect = KeyError("boom")
        worker, queue, _ = _worker(repo, service, clock)
        entry = queue.enqueue_content("text")

        worker.process_next()

        assert queue.get(entry.id).status == "pending"

    def test_failed_review_handoff_is_retried(self, repo, clock):
        worker, queue, review = _worker(repo, clock=clock)
        entry = queue.enqueue_content("Ukrainian military forces near Kharkiv repelled a Russian offensive")
        locked = OperationalError("INSERT INTO review_items", {}, Exception("database is locked"))

        with patch("intel_triage.storage.sql._to_review_item", side_effect=locked):
            result = worker.process_next()

        assert result.status == "pending"
        assert result.attempts == 1
        assert result.last_error.startswith("OperationalError")
        assert review.pending() == []

        clock.advance(30)
        assert worker.process_next().status == "review"
        assert [i.queue_entry_id for i in review.pending()] == [entry.id]

    def test_recovered_entry_is_not_routed_twice(self, repo, clock):
        worker, queue, review = _worker(repo, clock=clock)
        entry = queue.enqueue_content("Ukrainian military forces near Kharkiv repelled a Russian offensive")
        claimed = queue.dequeue_next()
        clock.advance(queue.claim_timeout)
        queue.recover_stale()

        result = review.route(claimed, worker.service.classify(claimed.content))

        assert result is None
        assert queue.get(entry.id).status == "pending"
        assert review.pending() == []

    def test_drain(self, repo):
        worker, queue, _ = _worker(repo)
        for text in ("Sunny weather", "Insider leaked credentials", "Sabotage at the facility"):
            queue.enqueue_content(text)

        assert worker.drain() == 3
        counts = queue.status_counts()
        assert counts["pending"] == 0
        assert counts["processing"] == 0
        assert counts["review"] + counts["completed"] == 3

    def test_drain_limit(self, repo):
        worker, queue, _ = _worker(repo)
        for i in range(3):
            queue.enqueue_content(f"weather {i}")

        assert worker.drain(max_items=2) == 2
        assert queue.status_counts()["pending"] == 1

    def test_ai_result_is_routed(self, repo):
        client = Mock()
        client.classify.return_value = json.dumps(
            {
                "relevant": False,
                "category": "none",
                "priority": "low",
                "confidence": 20,
                "title": "Weather",
                "summary": "Not relevant.",
                "reasoning": "No PIR match.",
            }
        )
        service = ClassificationService(repo, client, RateLimiter(100, 60.0, 0.0))
        worker, queue, review = _worker(repo, service)
        queue.enqueue_content("Sunny weather")

        assert worker.process_next().status == "completed"
        assert review.pending() == []


class TestWorkerPool:
    def test_start_and_stop(self):
        worker = Mock()
        worker.process_next.return_value = None
        pool = WorkerPool(worker, size=2, idle_sleep=0.01)

        pool.start()
        time.sleep(0.05)
        assert pool.running is True

        pool.stop(timeout=1.0)
        assert pool.running is False
        assert worker.process_next.called

    def test_survives_worker_exceptions(self):
        worker = Mock()
        worker.process_next.side_effect = RuntimeError("transient")
        pool = WorkerPool(worker, size=1, idle_sleep=0.01)

        pool.start()
        time.sleep(0.05)
        assert pool.running is True
        pool.stop(timeout=1.0)

        assert worker.process_next.call_count > 1
