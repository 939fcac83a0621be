from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (a volume mounted where a file was
    expected), the DB file is placed inside it.
    """
    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "wop.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              namespace TEXT,
              name TEXT,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS passes (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              namespace TEXT NOT NULL,
              name TEXT NOT NULL,
              outcome TEXT NOT NULL, -- converged|retryable|fatal
              reason TEXT NOT NULL,
              duration_ms REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_passes_key ON passes(namespace, name);
            """
        )


def log_event(level: str, message: str, namespace: str | None = None, name: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, namespace, name, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), namespace, name, message),
        )


@dataclass(frozen=True)
class PassRow:
    id: int
    ts: str
    namespace: str
    name: str
    outcome: str
    reason: str
    duration_ms: float


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    out: list[Any] = []
    for r in rows:
        out.append(cls(**dict(r)))
    return out


def record_pass(namespace: str, name: str, outcome: str, reason: str, duration_ms: float) -> None:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO passes (ts, namespace, name, outcome, reason, duration_ms)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (utc_now(), namespace, name, outcome, reason, round(duration_ms, 2)),
        )


def latest_passes(limit: int = 100, namespace: str | None = None, name: str | None = None) -> list[PassRow]:
    with connect() as conn:
        if namespace and name:
            rows = conn.execute(
                "SELECT * FROM passes WHERE namespace=? AND name=? ORDER BY id DESC LIMIT ?",
                (namespace, name, limit),
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM passes ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return _rows_to_dataclass(rows, PassRow)


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
