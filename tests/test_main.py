import threading
import time

from fastapi.testclient import TestClient

import main
from wop import db
from wop.models import DEPLOYMENT, SERVICE, ObjectKey


def _wait_for(cond, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if cond():
            return True
        time.sleep(0.01)
    return False


def test_components_share_one_stop_flag(cluster):
    c = main.build_controller(cluster)

    assert c.reconciler.stop is c.dispatcher.stop_event
    assert c.watcher.stop_event is c.dispatcher.stop_event
    assert c.watcher.enqueue == c.dispatcher.enqueue


def test_dispatcher_converges_websites_end_to_end(cluster):
    a = cluster.add_website("default", "a", "v1")
    b = cluster.add_website("default", "b", "v1")
    c = main.build_controller(cluster)
    c.dispatcher.start(workers=2)
    try:
        c.dispatcher.enqueue(a)
        c.dispatcher.enqueue(b)
        assert _wait_for(lambda: len(db.latest_passes()) == 2)
    finally:
        c.dispatcher.stop()

    # Only one Website can hold the fixed nodePort; the other ends converged anyway.
    assert cluster.live(DEPLOYMENT, a) is not None
    assert cluster.live(DEPLOYMENT, b) is not None
    services = [k for k in (a, b) if cluster.live(SERVICE, k) is not None]
    assert len(services) == 1
    assert {p.outcome for p in db.latest_passes()} == {"converged"}


def test_missing_website_pass_is_converged(cluster):
    c = main.build_controller(cluster)
    outcome = c.reconciler.reconcile(ObjectKey("default", "gone"))
    assert outcome.is_converged
    assert cluster.mutations == []


def test_lifespan_stops_controller_off_the_event_loop(monkeypatch):
    threads = {}

    class RecordingController:
        dispatcher = None

        def start(self):
            threads["start"] = threading.current_thread()

        def stop(self):
            threads["stop"] = threading.current_thread()

    monkeypatch.setattr(main, "build_controller", lambda: RecordingController())
    with TestClient(main.create_app(lifespan=main.lifespan)):
        pass

    assert threads["stop"] is not threads["start"]
