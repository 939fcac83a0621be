from __future__ import annotations

from threading import Event
from typing import Any

from . import db
from .convergence import ConvergenceEngine
from .errors import ClusterError
from .models import ConvergenceResult, ObjectKey, ReconcileOutcome
from .templates import build_specs


class Reconciler:
    """Runs one reconciliation pass for one Website.

    Resources are converged one after another. A fatal result stops the pass;
    whatever was already converged stays as it is and the next pass picks up
    the rest.
    """

    def __init__(self, cluster: Any, stop: Event | None = None):
        self.cluster = cluster
        self.stop = stop or Event()
        self.engine = ConvergenceEngine(cluster, cancelled=self.stop.is_set)

    def reconcile(self, key: ObjectKey) -> ReconcileOutcome:
        try:
            website = self.cluster.get_website(key)
        except ClusterError as e:
            return ReconcileOutcome.retryable(f"read Website: {e}")

        if website is None:
            # Managed resources are left behind on delete.
            db.log_event("INFO", "Website does not exist, nothing to do", namespace=key.namespace, name=key.name)
            return ReconcileOutcome.converged("website not found")

        results: list[ConvergenceResult] = []
        for spec in build_specs(website):
            if self.stop.is_set():
                return ReconcileOutcome.retryable("cancelled")
            result = self.engine.ensure(spec)
            if result.outcome.is_fatal:
                return result.outcome
            results.append(result)

        retry = [r for r in results if r.outcome.is_retryable]
        if retry:
            return ReconcileOutcome.retryable("; ".join(r.outcome.reason for r in retry))
        return ReconcileOutcome.converged(", ".join(f"{r.kind} {r.action}" for r in results))
