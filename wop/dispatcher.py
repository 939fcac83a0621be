from __future__ import annotations

import heapq
import time
from collections import deque
from threading import Condition, Event, Lock, Thread
from typing import Any

from . import db
from .alerts import notify_fatal
from .models import ObjectKey, ReconcileOutcome
from .settings import settings


class WorkQueue:
    """Key-partitioned work queue.

    A key sits in the queue at most once and is handed to at most one worker
    at a time. Adding a key while it is being processed marks it dirty; it is
    queued again when the worker calls ``done``. Delayed adds wait in a heap
    and are promoted by whichever worker is waiting when they fall due.
    """

    def __init__(self) -> None:
        self._cond = Condition()
        self._queue: deque[ObjectKey] = deque()
        self._dirty: set[ObjectKey] = set()
        self._processing: set[ObjectKey] = set()
        self._waiting: list[tuple[float, int, ObjectKey]] = []  # (due, seq, key)
        self._seq = 0
        self._shutdown = False

    def add(self, key: ObjectKey) -> None:
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: ObjectKey, delay_s: float) -> None:
        if delay_s <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            self._seq += 1
            heapq.heappush(self._waiting, (time.monotonic() + delay_s, self._seq, key))
            self._cond.notify_all()

    def get(self) -> ObjectKey | None:
        """Block until a key is ready. Returns None once the queue is shut down."""
        with self._cond:
            while True:
                self._promote_due()
                if self._shutdown:
                    return None
                if self._queue:
                    key = self._queue.popleft()
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key
                timeout = None
                if self._waiting:
                    timeout = max(0.0, self._waiting[0][0] - time.monotonic())
                self._cond.wait(timeout)

    def done(self, key: ObjectKey) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    @property
    def is_shut_down(self) -> bool:
        with self._cond:
            return self._shutdown

    def snapshot(self) -> dict[str, Any]:
        with self._cond:
            return {
                "queued": [str(k) for k in self._queue],
                "processing": sorted(str(k) for k in self._processing),
                "waiting": len(self._waiting),
            }

    def _add_locked(self, key: ObjectKey) -> None:
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def _promote_due(self) -> None:
        now = time.monotonic()
        while self._waiting and self._waiting[0][0] <= now:
            _, _, key = heapq.heappop(self._waiting)
            self._add_locked(key)


class Dispatcher:
    """Feeds Website keys to the reconciler from a fixed pool of worker threads.

    Retryable outcomes are re-queued with per-key exponential backoff, fatal
    ones are logged (and emailed when enabled) and dropped until the Website
    changes again.
    """

    def __init__(
        self,
        reconciler: Any,
        workers: int | None = None,
        retry_base_s: float | None = None,
        retry_max_s: float | None = None,
        stop: Event | None = None,
    ):
        self.reconciler = reconciler
        self.workers = max(1, int(workers or settings.workers))
        self.retry_base_s = settings.retry_base_s if retry_base_s is None else float(retry_base_s)
        self.retry_max_s = settings.retry_max_s if retry_max_s is None else float(retry_max_s)
        # Share the reconciler's stop flag so passes in flight see shutdown.
        self.stop_event = stop or getattr(reconciler, "stop", None) or Event()
        self.queue = WorkQueue()
        self._lock = Lock()
        self._failures: dict[ObjectKey, int] = {}
        self._threads: list[Thread] = []

    def enqueue(self, key: ObjectKey) -> None:
        self.queue.add(key)

    def start(self, workers: int | None = None) -> None:
        if workers is not None:
            self.workers = max(1, int(workers))
        with self._lock:
            if any(t.is_alive() for t in self._threads):
                return
            self._threads = [
                Thread(target=self._worker, name=f"wop-worker-{i}", daemon=True) for i in range(self.workers)
            ]
            threads = list(self._threads)
        for t in threads:
            t.start()
        db.log_event("INFO", f"Dispatcher started with {self.workers} workers")

    def run(self, workers: int | None = None) -> None:
        """Start the workers and block until ``stop`` is called."""
        self.start(workers)
        self.stop_event.wait()
        self.stop()

    def stop(self, timeout_s: float = 10.0) -> None:
        self.stop_event.set()
        self.queue.shut_down()
        with self._lock:
            threads = list(self._threads)
        for t in threads:
            t.join(timeout=timeout_s)

    @property
    def running(self) -> bool:
        with self._lock:
            return any(t.is_alive() for t in self._threads)

    def failures(self, key: ObjectKey) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def snapshot(self) -> dict[str, Any]:
        snap = self.queue.snapshot()
        with self._lock:
            snap["failures"] = {str(k): n for k, n in sorted(self._failures.items())}
        snap["workers"] = self.workers
        snap["running"] = self.running
        return snap

    def _worker(self) -> None:
        while True:
            key = self.queue.get()
            if key is None:
                return
            try:
                self._process(key)
            finally:
                self.queue.done(key)

    def _process(self, key: ObjectKey) -> None:
        t0 = time.monotonic()
        try:
            outcome = self.reconciler.reconcile(key)
        except Exception as e:
            db.log_event("ERROR", f"Reconcile crashed: {type(e).__name__}: {e}", namespace=key.namespace, name=key.name)
            outcome = ReconcileOutcome.retryable(f"{type(e).__name__}: {e}")
        duration_ms = (time.monotonic() - t0) * 1000.0
        db.record_pass(key.namespace, key.name, outcome.status, outcome.reason, duration_ms)
        self._handle_outcome(key, outcome)

    def _handle_outcome(self, key: ObjectKey, outcome: ReconcileOutcome) -> None:
        if outcome.is_retryable:
            if self.stop_event.is_set():
                return
            self.queue.add_after(key, self._next_delay(key))
            return

        with self._lock:
            self._failures.pop(key, None)
        if outcome.is_fatal:
            db.log_event("ERROR", f"Reconcile failed, not retrying: {outcome.reason}", namespace=key.namespace, name=key.name)
            notify_fatal(key, outcome.reason)

    def _next_delay(self, key: ObjectKey) -> float:
        with self._lock:
            n = self._failures.get(key, 0) + 1
            self._failures[key] = n
        return min(self.retry_max_s, self.retry_base_s * (2 ** min(n - 1, 30)))
