from __future__ import annotations

from typing import Any, Callable

from . import db
from .errors import AlreadyExists, ClusterError, Conflict, Invalid, NotFound, Unavailable, is_port_allocated
from .models import SERVICE, ConvergenceResult, FieldPatch, ManagedResourceSpec, ReconcileOutcome, read_field
from .templates import OWNED_FIELDS


class ConvergenceEngine:
    """Brings one live resource to its target spec: create, patch owned fields, or leave it.

    Every cluster error is classified here; callers only see ``ConvergenceResult``.
    """

    def __init__(self, cluster: Any, cancelled: Callable[[], bool] | None = None):
        self.cluster = cluster
        self._cancelled = cancelled or (lambda: False)

    def ensure(self, spec: ManagedResourceSpec) -> ConvergenceResult:
        try:
            self.cluster.create(spec)
        except AlreadyExists:
            return self._converge_existing(spec)
        except Invalid as e:
            if spec.kind == SERVICE and is_port_allocated(e):
                # Steady state: our own Service already holds the node port.
                # Port/spec drift on the Service is not corrected.
                return self._result(spec, "port_allocated", ReconcileOutcome.converged("node port already allocated"))
            return self._result(spec, "failed", ReconcileOutcome.fatal(f"create {spec.kind} rejected: {e}"))
        except (Conflict, NotFound, Unavailable) as e:
            return self._result(spec, "failed", ReconcileOutcome.retryable(f"create {spec.kind}: {e}"))
        except ClusterError as e:
            return self._result(spec, "failed", ReconcileOutcome.fatal(f"create {spec.kind} failed: {e}"))

        db.log_event("INFO", f"Created {spec.kind}", namespace=spec.key.namespace, name=spec.key.name)
        return self._result(spec, "created", ReconcileOutcome.converged("created"))

    def _converge_existing(self, spec: ManagedResourceSpec) -> ConvergenceResult:
        owned = OWNED_FIELDS.get(spec.kind, ())
        if not owned:
            return self._result(spec, "unchanged", ReconcileOutcome.converged("already exists"))

        if self._cancelled():
            return self._result(spec, "cancelled", ReconcileOutcome.retryable("cancelled"))
        try:
            live = self.cluster.get(spec.kind, spec.key)
        except ClusterError as e:
            return self._result(spec, "failed", ReconcileOutcome.retryable(f"read {spec.kind}: {e}"))
        if live is None:
            # Deleted between our create and our read; the next pass recreates it.
            return self._result(spec, "failed", ReconcileOutcome.retryable(f"{spec.kind} disappeared during pass"))

        resource_version = (live.get("metadata") or {}).get("resourceVersion")
        patches = []
        for mask in owned:
            desired = read_field(spec.manifest, mask)
            if read_field(live, mask) != desired:
                patches.append(FieldPatch(spec.kind, spec.key, mask, desired, resource_version=resource_version))
        if not patches:
            return self._result(spec, "unchanged", ReconcileOutcome.converged("up to date"))

        for patch in patches:
            if self._cancelled():
                return self._result(spec, "cancelled", ReconcileOutcome.retryable("cancelled"))
            try:
                self.cluster.patch(patch)
            except ClusterError as e:
                return self._result(spec, "failed", ReconcileOutcome.retryable(f"patch {spec.kind}: {e}"))
            db.log_event(
                "INFO",
                f"Updated {spec.kind} {patch.field} from {patch.read(live)!r} to {patch.value!r}",
                namespace=spec.key.namespace,
                name=spec.key.name,
            )
        return self._result(spec, "patched", ReconcileOutcome.converged("patched"))

    @staticmethod
    def _result(spec: ManagedResourceSpec, action: str, outcome: ReconcileOutcome) -> ConvergenceResult:
        return ConvergenceResult(kind=spec.kind, key=spec.key, action=action, outcome=outcome)
