from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass, field
from typing import Any

WEBSITE = "Website"
DEPLOYMENT = "Deployment"
SERVICE = "Service"

CONVERGED = "converged"
RETRYABLE = "retryable"
FATAL = "fatal"


@dataclass(frozen=True, order=True)
class ObjectKey:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, raw: str) -> "ObjectKey":
        namespace, sep, name = raw.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"Expected 'namespace/name', got {raw!r}")
        return cls(namespace=namespace, name=name)


@dataclass(frozen=True)
class Website:
    """The desired state for one website, as read from the cluster."""

    key: ObjectKey
    image_tag: str

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "Website":
        meta = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        return cls(
            key=ObjectKey(namespace=meta.get("namespace", ""), name=meta.get("name", "")),
            image_tag=str(spec.get("imageTag") or ""),
        )


@dataclass(frozen=True)
class ManagedResourceSpec:
    """Target shape of one resource the operator keeps converged."""

    kind: str
    key: ObjectKey
    labels: dict[str, str]
    manifest: dict[str, Any] = field(repr=False)

    def to_json(self) -> str:
        """Canonical serialization; identical inputs give identical bytes."""
        return json.dumps(self.manifest, sort_keys=True, separators=(",", ":"))


_SELECTOR_RE = re.compile(r"^(?P<name>[A-Za-z0-9_]+)\[(?P<key>[A-Za-z0-9_]+)=(?P<value>[^\]]+)\]$")


def _parse_mask(mask: str) -> list[tuple[str, tuple[str, str] | None]]:
    """Split ``a.b[name=x].c`` into ``[("a", None), ("b", ("name", "x")), ("c", None)]``."""
    out: list[tuple[str, tuple[str, str] | None]] = []
    for seg in mask.split("."):
        m = _SELECTOR_RE.match(seg)
        if m:
            out.append((m.group("name"), (m.group("key"), m.group("value"))))
        elif seg and "[" not in seg:
            out.append((seg, None))
        else:
            raise ValueError(f"Bad field mask segment {seg!r} in {mask!r}")
    if out[-1][1] is not None:
        raise ValueError(f"Field mask must end on a scalar field: {mask!r}")
    return out


@dataclass(frozen=True)
class FieldPatch:
    """A partial update: one field (by mask) set to one value.

    ``field`` is a dotted path where list elements are picked by a key,
    e.g. ``spec.template.spec.containers[name=nginx].image``. When set,
    ``resource_version`` makes the patch conditional on the live object
    not having changed since it was read.
    """

    kind: str
    key: ObjectKey
    field: str
    value: Any
    resource_version: str | None = None

    def __post_init__(self) -> None:
        _parse_mask(self.field)

    def body(self) -> dict[str, Any]:
        """Patch document that touches exactly ``field``."""
        doc: dict[str, Any] = {}
        node = doc
        segments = _parse_mask(self.field)
        for i, (name, selector) in enumerate(segments):
            last = i == len(segments) - 1
            if selector is not None:
                item = {selector[0]: selector[1]}
                node[name] = [item]
                node = item
            elif last:
                node[name] = self.value
            else:
                node = node.setdefault(name, {})
        if self.resource_version:
            doc.setdefault("metadata", {})["resourceVersion"] = self.resource_version
        return doc

    def read(self, obj: dict[str, Any]) -> Any:
        return read_field(obj, self.field)

    def apply(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of ``obj`` with ``field`` set; everything else is untouched."""
        out = copy.deepcopy(obj)
        node = out
        segments = _parse_mask(self.field)
        for i, (name, selector) in enumerate(segments):
            if i == len(segments) - 1:
                node[name] = self.value
                break
            if selector is None:
                node = node.setdefault(name, {})
                continue
            items = node.setdefault(name, [])
            item = _find_item(items, selector)
            if item is None:
                item = {selector[0]: selector[1]}
                items.append(item)
            node = item
        return out


def read_field(obj: dict[str, Any], mask: str) -> Any:
    """Value at ``mask`` in ``obj`` (None when any step is missing)."""
    node: Any = obj
    for name, selector in _parse_mask(mask):
        if not isinstance(node, dict):
            return None
        node = node.get(name)
        if selector is not None:
            node = _find_item(node, selector)
    return node


def _find_item(items: Any, selector: tuple[str, str]) -> dict[str, Any] | None:
    if not isinstance(items, list):
        return None
    key, value = selector
    for item in items:
        if isinstance(item, dict) and item.get(key) == value:
            return item
    return None


@dataclass(frozen=True)
class ReconcileOutcome:
    status: str  # converged|retryable|fatal
    reason: str = ""

    @classmethod
    def converged(cls, reason: str = "") -> "ReconcileOutcome":
        return cls(CONVERGED, reason)

    @classmethod
    def retryable(cls, reason: str) -> "ReconcileOutcome":
        return cls(RETRYABLE, reason)

    @classmethod
    def fatal(cls, reason: str) -> "ReconcileOutcome":
        return cls(FATAL, reason)

    @property
    def is_converged(self) -> bool:
        return self.status == CONVERGED

    @property
    def is_retryable(self) -> bool:
        return self.status == RETRYABLE

    @property
    def is_fatal(self) -> bool:
        return self.status == FATAL


@dataclass(frozen=True)
class ConvergenceResult:
    kind: str
    key: ObjectKey
    action: str  # created|patched|unchanged|port_allocated|failed|cancelled
    outcome: ReconcileOutcome
