import threading
import time
from collections import defaultdict

import pytest

from wop import db
from wop.dispatcher import Dispatcher, WorkQueue
from wop.models import ObjectKey, ReconcileOutcome
from wop.reconciler import Reconciler

A = ObjectKey("default", "a")
B = ObjectKey("default", "b")


def _wait_for(cond, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if cond():
            return True
        time.sleep(0.01)
    return False


class ScriptedReconciler:
    """Returns queued outcomes per key (last one repeats) and records calls."""

    def __init__(self, outcomes=None, delay_s=0.0):
        self.outcomes = defaultdict(list, outcomes or {})
        self.delay_s = delay_s
        self.calls = []
        self.active = defaultdict(int)
        self.max_active = defaultdict(int)
        self._lock = threading.Lock()

    def reconcile(self, key):
        with self._lock:
            self.calls.append(key)
            self.active[key] += 1
            self.max_active[key] = max(self.max_active[key], self.active[key])
            script = self.outcomes[key]
            outcome = script.pop(0) if len(script) > 1 else (script[0] if script else ReconcileOutcome.converged())
        time.sleep(self.delay_s)
        with self._lock:
            self.active[key] -= 1
        return outcome


# -- WorkQueue ------------------------------------------------------------


def test_queue_collapses_duplicate_keys():
    q = WorkQueue()
    q.add(A)
    q.add(A)
    q.add(B)

    assert q.snapshot()["queued"] == ["default/a", "default/b"]


def test_key_added_while_processing_runs_again_after_done():
    q = WorkQueue()
    q.add(A)
    assert q.get() == A

    q.add(A)
    q.add(A)
    assert q.snapshot()["queued"] == []
    assert q.snapshot()["processing"] == ["default/a"]

    q.done(A)
    assert q.snapshot()["queued"] == ["default/a"]
    assert q.get() == A


def test_done_without_new_add_does_not_requeue():
    q = WorkQueue()
    q.add(A)
    q.get()
    q.done(A)
    assert q.snapshot()["queued"] == []


def test_add_after_waits_for_the_delay():
    q = WorkQueue()
    t0 = time.monotonic()
    q.add_after(A, 0.1)
    assert q.snapshot()["waiting"] == 1

    assert q.get() == A
    assert time.monotonic() - t0 >= 0.09


def test_shut_down_wakes_blocked_getters():
    q = WorkQueue()
    got = []
    t = threading.Thread(target=lambda: got.append(q.get()))
    t.start()
    time.sleep(0.05)
    q.shut_down()
    t.join(timeout=2)

    assert got == [None]
    q.add(A)
    assert q.snapshot()["queued"] == []


# -- Dispatcher -------------------------------------------------------------


def test_converged_key_is_processed_once():
    rec = ScriptedReconciler()
    d = Dispatcher(rec, workers=2, retry_base_s=0.01, retry_max_s=0.05)
    d.start()
    try:
        d.enqueue(A)
        assert _wait_for(lambda: len(db.latest_passes()) == 1)
        time.sleep(0.1)
        assert rec.calls == [A]
        assert d.failures(A) == 0
    finally:
        d.stop()

    [row] = db.latest_passes()
    assert (row.namespace, row.name, row.outcome) == ("default", "a", "converged")


def test_retryable_key_is_retried_until_converged():
    rec = ScriptedReconciler(
        {A: [ReconcileOutcome.retryable("conflict"), ReconcileOutcome.retryable("conflict"), ReconcileOutcome.converged()]}
    )
    d = Dispatcher(rec, workers=1, retry_base_s=0.01, retry_max_s=0.05)
    d.start()
    try:
        d.enqueue(A)
        assert _wait_for(lambda: len(rec.calls) == 3)
        assert _wait_for(lambda: d.failures(A) == 0)
    finally:
        d.stop()

    assert [p.outcome for p in reversed(db.latest_passes())] == ["retryable", "retryable", "converged"]
    # Retries are not surfaced as operator events.
    assert all(e["level"] != "ERROR" for e in db.latest_events())


def test_fatal_key_is_logged_and_not_retried():
    rec = ScriptedReconciler({A: [ReconcileOutcome.fatal("exceeded quota")]})
    d = Dispatcher(rec, workers=1, retry_base_s=0.01, retry_max_s=0.05)
    d.start()
    try:
        d.enqueue(A)
        assert _wait_for(lambda: len(db.latest_passes()) == 1)
        time.sleep(0.1)
    finally:
        d.stop()

    assert rec.calls == [A]
    errors = [e for e in db.latest_events() if e["level"] == "ERROR"]
    assert len(errors) == 1
    assert errors[0]["name"] == "a" and "exceeded quota" in errors[0]["message"]


@pytest.mark.parametrize("failures,expected", [(1, 0.5), (2, 1.0), (3, 2.0), (8, 10.0), (500, 10.0)])
def test_backoff_is_exponential_and_capped(failures, expected):
    d = Dispatcher(ScriptedReconciler(), workers=1, retry_base_s=0.5, retry_max_s=10.0)
    for _ in range(failures - 1):
        d._next_delay(A)
    assert d._next_delay(A) == expected


def test_one_pass_per_key_at_a_time():
    rec = ScriptedReconciler(delay_s=0.05)
    d = Dispatcher(rec, workers=4)
    d.start()
    try:
        for _ in range(20):
            d.enqueue(A)
            d.enqueue(B)
            time.sleep(0.005)
        assert _wait_for(lambda: not d.snapshot()["queued"] and not d.snapshot()["processing"])
    finally:
        d.stop()

    assert rec.max_active[A] == 1
    assert rec.max_active[B] == 1
    # Repeated notifications collapse; far fewer passes than enqueues.
    assert 1 <= rec.calls.count(A) < 20


def test_distinct_keys_run_in_parallel():
    rec = ScriptedReconciler(delay_s=0.2)
    d = Dispatcher(rec, workers=2)
    d.start()
    try:
        t0 = time.monotonic()
        d.enqueue(A)
        d.enqueue(B)
        assert _wait_for(lambda: len(db.latest_passes()) == 2)
        assert time.monotonic() - t0 < 0.39
    finally:
        d.stop()


def test_crashing_reconciler_is_logged_and_retried():
    class Boom:
        def __init__(self):
            self.calls = 0

        def reconcile(self, key):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("unexpected")
            return ReconcileOutcome.converged()

    rec = Boom()
    d = Dispatcher(rec, workers=1, retry_base_s=0.01)
    d.start()
    try:
        d.enqueue(A)
        assert _wait_for(lambda: rec.calls == 2)
    finally:
        d.stop()

    assert any("RuntimeError" in e["message"] for e in db.latest_events() if e["level"] == "ERROR")


def test_stop_cancels_in_flight_pass_and_does_not_reschedule(cluster):
    cluster.add_website("default", "a", "v1")
    started = threading.Event()
    release = threading.Event()
    real_get_website = cluster.get_website

    def slow_get_website(key):
        started.set()
        release.wait(2)
        return real_get_website(key)

    cluster.get_website = slow_get_website
    reconciler = Reconciler(cluster)
    d = Dispatcher(reconciler, workers=1, retry_base_s=0.01)
    d.start()
    d.enqueue(A)
    assert started.wait(2)

    stopper = threading.Thread(target=d.stop)
    stopper.start()
    assert _wait_for(d.stop_event.is_set)
    release.set()
    stopper.join(timeout=5)

    assert not d.running
    assert cluster.mutations == []
    assert d.queue.snapshot()["waiting"] == 0
    [row] = db.latest_passes()
    assert row.outcome == "retryable" and row.reason == "cancelled"


def test_snapshot_reports_state():
    d = Dispatcher(ScriptedReconciler(), workers=3)
    d.enqueue(A)
    d._next_delay(B)

    snap = d.snapshot()
    assert snap["queued"] == ["default/a"]
    assert snap["failures"] == {"default/b": 1}
    assert snap["workers"] == 3
    assert snap["running"] is False
