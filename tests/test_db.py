from dataclasses import replace

from wop import db
from wop.settings import settings


def test_events_are_returned_newest_first():
    db.log_event("info", "first")
    db.log_event("ERROR", "second", namespace="default", name="a")

    events = db.latest_events()
    assert [e["message"] for e in events] == ["second", "first"]
    assert events[0]["level"] == "ERROR"
    assert events[1]["level"] == "INFO"
    assert events[1]["namespace"] is None


def test_passes_filter_by_key():
    db.record_pass("default", "a", "converged", "Deployment created, Service created", 12.3456)
    db.record_pass("default", "b", "retryable", "conflict", 1.0)

    rows = db.latest_passes(namespace="default", name="a")
    assert len(rows) == 1
    assert rows[0].outcome == "converged"
    assert rows[0].duration_ms == 12.35
    assert len(db.latest_passes(limit=1)) == 1


def test_directory_db_path_gets_a_file_inside(tmp_path, monkeypatch):
    target = tmp_path / "volume"
    target.mkdir()
    monkeypatch.setattr(db, "settings", replace(settings, db_path=str(target)))

    db.init_db()
    db.log_event("INFO", "hello")

    assert (target / "wop.db").exists()
