"""
End-to-end scenarios: batch queueing, duplicate skipping, retries to success,
retry exhaustion, cancellation and batch completion.
"""

import threading
import time

import pytest

from autosender.adapter import SubmissionAdapter
from autosender.exceptions import InvalidTransitionError, RecordNotFoundError
from autosender.models import (
    BATCH_COMPLETE, CANCELLED, FAILED, PENDING, PROCESSING, SUBMITTED, SubmissionResult,
)
from autosender.app import build_app
from autosender.config import Settings


def _drain(app, max_ticks=50):
    """Tick the worker until the queue is empty."""
    for _ in range(max_ticks):
        if app.queue.get_queue_length() == 0:
            return
        app.worker.process_queue()
    raise AssertionError("queue did not drain")


@pytest.mark.integration
def test_batch_of_three_creates_pending_records_and_tasks(make_app, seed_user):
    app = make_app()
    resume_id = seed_user(app)

    result = app.service.queue_applications("user-1", resume_id, ["j1", "j2", "j3"])

    assert result.total_count == 3
    records = [app.records.find_by_id(a.id) for a in result.applications]
    assert all(r.status == PENDING for r in records)
    assert {r.batch_id for r in records} == {result.batch_id}
    assert [t.job_id for t in app.queue.get_queue_items()] == ["j1", "j2", "j3"]
    assert app.service.get_batch(result.batch_id, "user-1") == records


@pytest.mark.integration
def test_duplicate_active_application_is_skipped(make_app, seed_user):
    app = make_app()
    resume_id = seed_user(app)
    first = app.service.queue_applications("user-1", resume_id, ["j1"])

    second = app.service.queue_applications("user-1", resume_id, ["j1", "j2"])

    assert [a.job_id for a in second.applications] == ["j2"]
    assert second.batch_id != first.batch_id
    assert app.records.list("user-1").total == 2
    assert app.queue.get_queue_length() == 2


@pytest.mark.integration
def test_duplicate_within_one_request_is_skipped(make_app, seed_user):
    app = make_app()
    resume_id = seed_user(app)
    result = app.service.queue_applications("user-1", resume_id, ["j1", "j1"])
    assert result.total_count == 1
    assert app.queue.get_queue_length() == 1


@pytest.mark.integration
def test_failed_application_can_be_queued_again(make_app, seed_user):
    app = make_app()
    resume_id = seed_user(app)
    first = app.service.queue_applications("user-1", resume_id, ["j1"]).applications[0]
    app.records.update_status(first.id, PROCESSING)
    app.records.update_status(first.id, FAILED)

    again = app.service.queue_applications("user-1", resume_id, ["j1"])
    assert again.total_count == 1


@pytest.mark.integration
def test_unknown_or_foreign_resume_is_rejected(make_app, seed_user):
    app = make_app()
    seed_user(app, user_id="owner", resume_id="r-owner")
    with pytest.raises(RecordNotFoundError):
        app.service.queue_applications("intruder", "r-owner", ["j1"])
    with pytest.raises(RecordNotFoundError):
        app.service.queue_applications("owner", "missing", ["j1"])
    assert app.queue.get_queue_length() == 0


@pytest.mark.integration
def test_two_failures_then_success(make_app, seed_user, scripted):
    adapter = scripted([
        SubmissionResult(False, error_message="timeout"),
        SubmissionResult(False, error_message="timeout"),
        SubmissionResult(True, "CONF-OK"),
    ])
    app = make_app(adapter=adapter, max_retries=3)
    app_id = app.service.queue_applications("user-1", seed_user(app), ["j1"]).applications[0].id

    _drain(app)

    record = app.records.find_by_id(app_id)
    assert record.status == SUBMITTED
    assert record.retry_count == 2
    assert record.confirmation_id == "CONF-OK"
    assert len(adapter.calls) == 3


@pytest.mark.integration
def test_always_failing_exhausts_retries(make_app, seed_user, scripted, sink):
    adapter = scripted([SubmissionResult(False, error_message="HTTP 503: Service Unavailable")])
    app = make_app(adapter=adapter, max_retries=2)
    app_id = app.service.queue_applications("user-1", seed_user(app), ["j1"]).applications[0].id

    _drain(app)

    record = app.records.find_by_id(app_id)
    assert len(adapter.calls) == 3
    assert record.status == FAILED
    assert record.error_message.startswith("Max retries exceeded")
    assert "HTTP 503" in record.error_message
    assert sink.types().count("application_failed") == 1


@pytest.mark.integration
def test_cancel_pending_removes_task(make_app, seed_user):
    app = make_app()
    result = app.service.queue_applications("user-1", seed_user(app), ["j1", "j2"])
    target = result.applications[0].id

    cancelled = app.service.cancel(target, "user-1")

    assert cancelled.status == CANCELLED
    assert app.records.find_by_id(target).status == CANCELLED
    assert [t.application_id for t in app.queue.get_queue_items()] == [result.applications[1].id]


@pytest.mark.integration
def test_cancel_submitted_is_rejected(make_app, seed_user):
    app = make_app()
    app_id = app.service.queue_applications("user-1", seed_user(app), ["j1"]).applications[0].id
    app.worker.process_queue()

    with pytest.raises(InvalidTransitionError):
        app.service.cancel(app_id)
    assert app.records.find_by_id(app_id).status == SUBMITTED


@pytest.mark.integration
def test_cancel_checks_ownership(make_app, seed_user):
    app = make_app()
    app_id = app.service.queue_applications("user-1", seed_user(app), ["j1"]).applications[0].id
    with pytest.raises(RecordNotFoundError):
        app.service.cancel(app_id, "someone-else")
    assert app.records.find_by_id(app_id).status == PENDING


@pytest.mark.integration
def test_batch_completion_notification(make_app, seed_user, scripted, sink):
    adapter = scripted([SubmissionResult(True, "A"), SubmissionResult(False, error_message="closed")])
    app = make_app(adapter=adapter, max_retries=0)
    result = app.service.queue_applications("user-1", seed_user(app), ["j1", "j2"])

    app.worker.process_queue()
    assert BATCH_COMPLETE not in sink.types()
    app.worker.process_queue()

    done = [n for _, n in sink.sent if n.type == BATCH_COMPLETE]
    assert len(done) == 1
    assert done[0].data == {"batchId": result.batch_id, "total": 2, "submitted": 1, "failed": 1}


@pytest.mark.integration
def test_user_applications_are_processed_one_at_a_time(make_app, seed_user, scripted):
    """While one of a user's tasks holds the lock, the worker moves on to other users."""
    app = make_app()
    seed_user(app, user_id="u1", resume_id="r1")
    seed_user(app, user_id="u2", resume_id="r2")
    app.service.queue_applications("u1", "r1", ["a", "b"])
    app.service.queue_applications("u2", "r2", ["c"])

    first = app.queue.dequeue()  # simulate another worker holding u1
    assert first.user_id == "u1"

    handled = app.worker.process_queue()
    assert handled.user_id == "u2"
    assert app.worker.process_queue() is None

    app.queue.release_lock(first.application_id, first.user_id)
    assert app.worker.process_queue().job_id == "b"


@pytest.mark.integration
def test_several_workers_share_one_database(db_file, storage, sink, seed_user, scripted):
    settings = Settings(max_retries=1, poll_interval_ms=5)
    apps = [build_app(db_file, settings=settings, adapter=scripted(), storage=storage,
                      notifier=sink, worker_name=f"w{i}") for i in range(3)]
    try:
        users = [f"u{i}" for i in range(4)]
        for u in users:
            seed_user(apps[0], user_id=u, resume_id=f"r-{u}")
            apps[0].service.queue_applications(u, f"r-{u}", [f"{u}-j{k}" for k in range(3)])

        barrier = threading.Barrier(len(apps))

        def run(a):
            barrier.wait()
            while a.queue.get_queue_length():
                a.worker.process_queue()

        threads = [threading.Thread(target=run, args=(a,)) for a in apps]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        counts = apps[0].service.status_counts()
        assert counts[SUBMITTED] == 12
        assert counts[PENDING] == counts[PROCESSING] == counts[FAILED] == 0
    finally:
        for a in apps:
            a.close()


class FlakyBoard(SubmissionAdapter):
    """Fails each job's first attempt and notes when one user has two submissions in flight."""

    def __init__(self, tracker):
        self.tracker = tracker

    def submit(self, job_id, payload):
        t = self.tracker
        user = job_id.split("-")[0]
        with t["lock"]:
            if user in t["active"]:
                t["overlaps"].append(job_id)
            t["active"].add(user)
            t["attempts"][job_id] = t["attempts"].get(job_id, 0) + 1
            first_try = t["attempts"][job_id] == 1
        time.sleep(0.002)
        with t["lock"]:
            t["active"].discard(user)
        if first_try:
            return SubmissionResult(False, error_message="HTTP 503: Service Unavailable")
        return SubmissionResult(True, f"CONF-{job_id}")

    def fetch(self, params):
        return []


@pytest.mark.integration
def test_workers_retrying_concurrently_keep_users_serialized(db_file, storage, sink, seed_user):
    tracker = {"lock": threading.Lock(), "active": set(), "overlaps": [], "attempts": {}}
    settings = Settings(max_retries=2, poll_interval_ms=5)
    apps = [build_app(db_file, settings=settings, adapter=FlakyBoard(tracker), storage=storage,
                      notifier=sink, worker_name=f"w{i}") for i in range(4)]
    try:
        users = [f"u{i}" for i in range(3)]
        for u in users:
            seed_user(apps[0], user_id=u, resume_id=f"r-{u}")
            apps[0].service.queue_applications(u, f"r-{u}", [f"{u}-j{k}" for k in range(4)])

        barrier = threading.Barrier(len(apps))
        deadline = time.time() + 30

        def run(a):
            barrier.wait()
            while time.time() < deadline:
                counts = a.service.status_counts()
                if counts[PENDING] == counts[PROCESSING] == 0:
                    return
                a.worker.process_queue()

        threads = [threading.Thread(target=run, args=(a,)) for a in apps]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=35)

        assert tracker["overlaps"] == []
        counts = apps[0].service.status_counts()
        assert counts[SUBMITTED] == 12
        assert counts[FAILED] == 0
        assert all(n == 2 for n in tracker["attempts"].values())
        assert apps[0].queue.get_queue_length() == 0
    finally:
        for a in apps:
            a.close()
