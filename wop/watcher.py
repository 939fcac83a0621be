from __future__ import annotations

import random
import time
from threading import Event, Lock, Thread
from typing import Any, Callable

from kubernetes import watch
from kubernetes.client import ApiException

from . import db
from .models import DEPLOYMENT, SERVICE, WEBSITE, ObjectKey
from .settings import settings
from .templates import ownership_labels

OWNER_SELECTOR = "type=Website"


def _meta(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj.get("metadata") or {}
    meta = getattr(obj, "metadata", None)
    if meta is None:
        return {}
    return {
        "name": getattr(meta, "name", None),
        "namespace": getattr(meta, "namespace", None),
        "labels": getattr(meta, "labels", None) or {},
        "resourceVersion": getattr(meta, "resource_version", None),
    }


def key_for_event(kind: str, obj: Any) -> ObjectKey | None:
    """Website key a watch event should trigger, or None to ignore it."""
    meta = _meta(obj)
    namespace = meta.get("namespace")
    if not namespace:
        return None
    if kind == WEBSITE:
        name = meta.get("name")
        return ObjectKey(namespace, name) if name else None
    if kind in (DEPLOYMENT, SERVICE):
        labels = meta.get("labels") or {}
        owner = labels.get("website")
        if owner and labels.get("type") == ownership_labels(owner)["type"]:
            return ObjectKey(namespace, owner)
    return None


class Watcher:
    """List-then-watch for Websites and the resources they own.

    Each kind gets its own thread. Streams resume from the last seen
    resourceVersion, re-list on 410 Gone and give up on 401/403. The Website
    stream also re-lists every ``resync_s`` seconds and enqueues everything,
    so a missed event is eventually corrected.
    """

    def __init__(
        self,
        cluster: Any,
        enqueue: Callable[[ObjectKey], None],
        namespace: str | None = None,
        stop: Event | None = None,
        watch_factory: Callable[[], Any] = watch.Watch,
    ):
        self.cluster = cluster
        self.enqueue = enqueue
        self.namespace = settings.watch_namespace if namespace is None else namespace
        self.stop_event = stop or Event()
        self.watch_factory = watch_factory
        self._threads: list[Thread] = []
        self._active: set[Any] = set()
        self._active_lock = Lock()
        self._last_resync = time.monotonic()

    def start(self) -> None:
        for kind in (WEBSITE, DEPLOYMENT, SERVICE):
            t = Thread(target=self.run_kind, args=(kind,), name=f"wop-watch-{kind.lower()}", daemon=True)
            self._threads.append(t)
            t.start()

    def stop(self) -> None:
        """Stop all threads, interrupting any open watch stream."""
        self.stop_event.set()
        with self._active_lock:
            active = list(self._active)
        for w in active:
            w.stop()

    def _list_fn(self, kind: str) -> tuple[Callable[..., Any], dict[str, Any]]:
        c = self.cluster
        if kind == WEBSITE:
            if self.namespace:
                return c.custom.list_namespaced_custom_object, {
                    "group": c.group, "version": c.version, "namespace": self.namespace, "plural": c.plural,
                }
            return c.custom.list_cluster_custom_object, {"group": c.group, "version": c.version, "plural": c.plural}
        if kind == DEPLOYMENT:
            if self.namespace:
                return c.apps.list_namespaced_deployment, {"namespace": self.namespace, "label_selector": OWNER_SELECTOR}
            return c.apps.list_deployment_for_all_namespaces, {"label_selector": OWNER_SELECTOR}
        if self.namespace:
            return c.core.list_namespaced_service, {"namespace": self.namespace, "label_selector": OWNER_SELECTOR}
        return c.core.list_service_for_all_namespaces, {"label_selector": OWNER_SELECTOR}

    def relist(self, kind: str) -> str | None:
        """List everything of ``kind``, enqueue the owners and return the list resourceVersion."""
        fn, kwargs = self._list_fn(kind)
        listing = fn(**kwargs)
        if isinstance(listing, dict):
            items = listing.get("items") or []
            resource_version = (listing.get("metadata") or {}).get("resourceVersion")
        else:
            items = getattr(listing, "items", None) or []
            resource_version = getattr(getattr(listing, "metadata", None), "resource_version", None)
        for obj in items:
            key = key_for_event(kind, obj)
            if key is not None:
                self.enqueue(key)
        return resource_version

    def run_kind(self, kind: str) -> None:
        fn, kwargs = self._list_fn(kind)
        resource_version: str | None = None
        backoff_s = 1.0
        while not self.stop_event.is_set():
            try:
                if resource_version is None:
                    resource_version = self.relist(kind)
                resource_version = self._stream(kind, fn, kwargs, resource_version)
                backoff_s = 1.0
            except ApiException as e:
                if e.status == 410:
                    resource_version = None
                    continue
                if e.status in {401, 403}:
                    db.log_event("ERROR", f"Watch for {kind} denied (HTTP {e.status}); check RBAC")
                    return
                db.log_event("WARN", f"Watch for {kind} failed: HTTP {e.status} {e.reason}")
                self.stop_event.wait(backoff_s * (0.5 + random.random()))
                backoff_s = min(backoff_s * 2, 30.0)
            except Exception as e:
                db.log_event("WARN", f"Watch for {kind} failed: {type(e).__name__}: {e}")
                self.stop_event.wait(backoff_s * (0.5 + random.random()))
                backoff_s = min(backoff_s * 2, 30.0)

    def _stream(self, kind: str, fn: Callable[..., Any], kwargs: dict[str, Any], resource_version: str | None) -> str | None:
        """Consume one watch stream; returns the resourceVersion to resume from.

        Returns None (forcing a full re-list) when the resync period has passed.
        """
        timeout = max(1, settings.watch_timeout_s)
        w = self.watch_factory()
        with self._active_lock:
            self._active.add(w)
        try:
            for event in w.stream(fn, resource_version=resource_version, timeout_seconds=timeout, **kwargs):
                if self.stop_event.is_set():
                    break
                obj = event.get("object")
                if event.get("type") == "ERROR":
                    code = (obj or {}).get("code") if isinstance(obj, dict) else None
                    raise ApiException(status=code or 500, reason="watch error event")
                rv = _meta(obj).get("resourceVersion")
                if rv:
                    resource_version = rv
                key = key_for_event(kind, obj)
                if key is not None:
                    self.enqueue(key)
        finally:
            w.stop()
            with self._active_lock:
                self._active.discard(w)
        if kind == WEBSITE and self._resync_due():
            return None
        return resource_version

    def _resync_due(self) -> bool:
        if settings.resync_s <= 0:
            return False
        now = time.monotonic()
        if now - self._last_resync >= settings.resync_s:
            self._last_resync = now
            return True
        return False
