"""Tests for the analyst review workflow."""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from intel_triage.errors import InvalidTransition, NotFound
from intel_triage.models import PIR, Classification
from intel_triage.pipeline import ProcessingQueue, QueueWorker, ReviewWorkflow
from intel_triage.processors import ClassificationService
from intel_triage.processors.ai import RateLimiter


def _classification(**overrides):
    values = dict(
        relevant=True,
        category="sabotage",
        priority="medium",
        confidence=75,
        title="Substation fire",
        summary="A fire hit a substation.",
        reasoning="Infrastructure attack indicators.",
        quote="fire hit a substation",
        tags=["sabotage"],
    )
    values.update(overrides)
    return Classification(**values)


def _open_review(repo, review, content="Substation fire", classification=None):
    queue = ProcessingQueue(repo)
    entry = queue.enqueue_content(content, origin="Grid Watch")
    queue.dequeue_next()
    classification = classification or _classification()
    entry = queue.advance(entry.id, "review", classification=classification)
    return review.submit(entry, classification)


class TestSubmit:
    def test_relevant_item_opens_review(self, repo):
        review = ReviewWorkflow(repo)

        item = _open_review(repo, review)

        assert item.state == "pending_review"
        assert item.decision == "undecided"
        assert item.origin == "Grid Watch"
        assert [i.id for i in review.pending()] == [item.id]

    @pytest.mark.parametrize(
        "overrides", [{"relevant": False}, {"relevant": False, "category": "none"}, {"category": "none"}]
    )
    def test_non_reviewable_never_pending(self, repo, overrides):
        review = ReviewWorkflow(repo)
        queue = ProcessingQueue(repo)
        entry = queue.enqueue_content("weather")

        assert review.submit(entry, _classification(**overrides)) is None
        assert review.pending() == []

    def test_worker_routes_irrelevant_content_to_completed(self, repo):
        queue = ProcessingQueue(repo)
        review = ReviewWorkflow(repo)
        service = ClassificationService(repo, None, RateLimiter(100, 60.0, 0.0))
        worker = QueueWorker(queue, service, review)
        entry = queue.enqueue_content("Sunny weather expected all week")

        worker.process_next()

        assert queue.get(entry.id).status == "completed"
        assert review.pending() == []

    def test_submit_is_idempotent_per_entry(self, repo):
        review = ReviewWorkflow(repo)
        item = _open_review(repo, review)
        entry = ProcessingQueue(repo).get(item.queue_entry_id)

        again = review.submit(entry, _classification())

        assert again.id == item.id
        assert len(review.pending()) == 1


class TestDecisions:
    def test_approve_completes_queue_entry(self, repo):
        review = ReviewWorkflow(repo)
        item = _open_review(repo, review)

        approved = review.approve(item.id, decided_by="alice")

        assert approved.state == "approved"
        assert approved.decided_by == "alice"
        assert approved.decided_at is not None
        assert ProcessingQueue(repo).get(item.queue_entry_id).status == "completed"

    def test_reject_completes_queue_entry(self, repo):
        review = ReviewWorkflow(repo)
        item = _open_review(repo, review)

        rejected = review.reject(item.id)

        assert rejected.state == "rejected"
        assert ProcessingQueue(repo).get(item.queue_entry_id).status == "completed"
        assert [i.id for i in review.rejected()] == [item.id]

    def test_decision_is_final(self, repo):
        review = ReviewWorkflow(repo)
        item = _open_review(repo, review)
        review.approve(item.id)

        with pytest.raises(InvalidTransition):
            review.approve(item.id)
        with pytest.raises(InvalidTransition):
            review.reject(item.id)

    def test_missing_item(self, repo):
        with pytest.raises(NotFound):
            ReviewWorkflow(repo).approve(42)

    def test_approve_all_reports_each_item(self, repo):
        review = ReviewWorkflow(repo)
        ids = [_open_review(repo, review, content=f"item {i}").id for i in range(3)]
        original = review.approve

        def flaky(review_id, decided_by="analyst"):
            if review_id == ids[1]:
                raise InvalidTransition("decided elsewhere")
            return original(review_id, decided_by)

        review.approve = flaky
        outcomes = review.approve_all()

        assert [(o.item_id, o.ok) for o in outcomes] == [(ids[0], True), (ids[1], False), (ids[2], True)]
        assert outcomes[1].error == "decided elsewhere"
        assert [i.id for i in review.approved()] == [ids[0], ids[2]]
        assert [i.id for i in review.pending()] == [ids[1]]

    def test_storage_error_does_not_stop_bulk_approval(self, repo):
        review = ReviewWorkflow(repo)
        ids = [_open_review(repo, review, content=f"item {i}").id for i in range(3)]
        original = repo.record_review_decision

        def locked_once(review_id, *args):
            if review_id == ids[0]:
                raise OperationalError("UPDATE review_items", {}, Exception("database is locked"))
            return original(review_id, *args)

        with patch.object(repo, "record_review_decision", side_effect=locked_once):
            outcomes = review.approve_all()

        assert [(o.item_id, o.ok) for o in outcomes] == [(ids[0], False), (ids[1], True), (ids[2], True)]
        assert "database is locked" in outcomes[0].error
        assert [i.id for i in review.approved()] == [ids[1], ids[2]]
        assert [i.id for i in review.pending()] == [ids[0]]

    def test_reject_all(self, repo):
        review = ReviewWorkflow(repo)
        for i in range(2):
            _open_review(repo, review, content=f"item {i}")

        outcomes = review.reject_all()

        assert all(o.ok for o in outcomes)
        assert len(review.rejected()) == 2


class TestEdits:
    def test_edits_override_machine_values(self, repo):
        review = ReviewWorkflow(repo)
        item = _open_review(repo, review)

        edited = review.edit(item.id, title="Edited title", priority="high")
        edited = review.edit(item.id, confidence=95)

        assert edited.edits == {"title": "Edited title", "priority": "high", "confidence": 95}
        final = edited.effective()
        assert (final.title, final.priority, final.confidence) == ("Edited title", "high", 95)
        assert edited.classification.title == "Substation fire"

    @pytest.mark.parametrize(
        "changes",
        [
            {"quote": "x"},
            {"priority": "urgent"},
            {"confidence": 101},
            {"confidence": True},
            {"category": "none"},
            {"category": "weather"},
        ],
    )
    def test_invalid_edits(self, repo, changes):
        review = ReviewWorkflow(repo)
        item = _open_review(repo, review)

        with pytest.raises(ValueError):
            review.edit(item.id, **changes)

    def test_category_edit_uses_default_requirements(self, repo):
        review = ReviewWorkflow(repo)
        item = _open_review(repo, review)

        assert review.edit(item.id, category=" ukraine ").effective().category == "ukraine"

    def test_category_edit_uses_configured_requirements(self, repo):
        repo.save_pir(PIR(name="Port Security", category="ports", keywords=["port"]))
        review = ReviewWorkflow(repo)
        item = _open_review(repo, review)

        assert review.edit(item.id, category="ports").effective().category == "ports"
        with pytest.raises(ValueError):
            review.edit(item.id, category="ukraine")

    def test_edits_close_after_decision(self, repo):
        review = ReviewWorkflow(repo)
        item = _open_review(repo, review)
        review.reject(item.id)

        with pytest.raises(InvalidTransition):
            review.edit(item.id, title="late")


class TestPublish:
    def test_publish_uses_edited_values(self, repo):
        sent = []
        review = ReviewWorkflow(repo, publisher=sent.append)
        item = _open_review(repo, review)
        review.edit(item.id, title="Analyst title")
        review.approve(item.id)

        published = review.publish(item.id)

        assert published.title == "Analyst title"
        assert published.category == "sabotage"
        assert published.source_name == "Grid Watch"
        assert sent[0]["title"] == "Analyst title"
        after = review.get(item.id)
        assert after.state == "published"
        assert after.intelligence_item_id == published.id
        assert [p.id for p in repo.list_intelligence_items()] == [published.id]

    def test_publish_requires_approval(self, repo):
        review = ReviewWorkflow(repo)
        item = _open_review(repo, review)

        with pytest.raises(InvalidTransition):
            review.publish(item.id)

    def test_failed_publish_stays_approved(self, repo):
        def broken(record):
            raise RuntimeError("downstream unavailable")

        review = ReviewWorkflow(repo, publisher=broken)
        item = _open_review(repo, review)
        review.approve(item.id)

        with pytest.raises(RuntimeError):
            review.publish(item.id)

        after = review.get(item.id)
        assert after.state == "approved"
        assert after.publish_error == "downstream unavailable"
        assert repo.list_intelligence_items() == []

    def test_retry_after_failure_clears_error(self, repo):
        calls = []

        def flaky(record):
            calls.append(record)
            if len(calls) == 1:
                raise RuntimeError("timeout")

        review = ReviewWorkflow(repo, publisher=flaky)
        item = _open_review(repo, review)
        review.approve(item.id)
        with pytest.raises(RuntimeError):
            review.publish(item.id)

        review.publish(item.id)

        after = review.get(item.id)
        assert after.state == "published"
        assert after.publish_error is None

    def test_publish_approved_outcomes(self, repo):
        def picky(record):
            if record["title"] == "bad":
                raise RuntimeError("rejected by sink")

        review = ReviewWorkflow(repo, publisher=picky)
        good = _open_review(repo, review, content="one")
        bad = _open_review(repo, review, content="two", classification=_classification(title="bad"))
        review.approve_all()

        outcomes = review.publish_approved()

        assert {(o.item_id, o.ok) for o in outcomes} == {(good.id, True), (bad.id, False)}
        assert review.get(bad.id).state == "approved"

    def test_export_groups_by_state(self, repo):
        review = ReviewWorkflow(repo)
        first = _open_review(repo, review, content="one")
        _open_review(repo, review, content="two")
        review.approve(first.id)
        review.publish(first.id)

        snapshot = review.export()

        assert set(snapshot) == {"exported_at", "pending_review", "approved", "rejected", "published"}
        assert len(snapshot["pending_review"]) == 1
        assert snapshot["published"][0]["id"] == first.id
        assert snapshot["published"][0]["category"] == "sabotage"
