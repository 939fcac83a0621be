from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Iterator

from kubernetes import client, config
from kubernetes.client import ApiException
from urllib3.exceptions import HTTPError

from .errors import AlreadyExists, ClusterError, Conflict, Invalid, NotFound, Unavailable
from .models import DEPLOYMENT, SERVICE, FieldPatch, ManagedResourceSpec, ObjectKey, Website
from .settings import settings


def load_config(in_cluster: bool | None = None) -> None:
    """Load credentials for the default ApiClient (service account or kubeconfig)."""
    if in_cluster is None:
        in_cluster = settings.in_cluster
    if in_cluster:
        config.load_incluster_config()
    else:
        config.load_kube_config()


def translate_api_exception(exc: ApiException) -> ClusterError:
    """Map an API server error onto the operator's error taxonomy."""
    reason = ""
    message = str(exc.reason or "")
    try:
        payload = json.loads(exc.body or "")
        reason = payload.get("reason") or ""
        message = payload.get("message") or message
    except (TypeError, ValueError, AttributeError):
        pass

    if exc.status == 404:
        cls: type[ClusterError] = NotFound
    elif exc.status == 409:
        cls = AlreadyExists if reason == "AlreadyExists" else Conflict
    elif exc.status == 422:
        cls = Invalid
    else:
        cls = ClusterError
    return cls(message, status=exc.status)


@contextmanager
def _classified() -> Iterator[None]:
    """Re-raise API server and transport failures as ``ClusterError``."""
    try:
        yield
    except ApiException as e:
        raise translate_api_exception(e) from e
    except (HTTPError, OSError) as e:
        raise Unavailable(f"{type(e).__name__}: {e}") from e


class KubeCluster:
    """Cluster client backed by the official kubernetes client.

    One instance is shared by every worker; the underlying urllib3 pool is
    thread-safe. Every call raises a classified ``ClusterError`` on failure.
    """

    def __init__(self, api_client: client.ApiClient | None = None):
        self.api_client = api_client or client.ApiClient()
        self.core = client.CoreV1Api(self.api_client)
        self.apps = client.AppsV1Api(self.api_client)
        self.custom = client.CustomObjectsApi(self.api_client)
        self.group = settings.crd_group
        self.version = settings.crd_version
        self.plural = settings.crd_plural

    def get_website(self, key: ObjectKey) -> Website | None:
        try:
            with _classified():
                obj = self.custom.get_namespaced_custom_object(
                    self.group, self.version, key.namespace, self.plural, key.name
                )
        except NotFound:
            return None
        return Website.from_object(obj)

    def get(self, kind: str, key: ObjectKey) -> dict[str, Any] | None:
        """Live object as a plain dict (camelCase keys), or None when absent."""
        try:
            with _classified():
                if kind == DEPLOYMENT:
                    obj = self.apps.read_namespaced_deployment(key.name, key.namespace)
                elif kind == SERVICE:
                    obj = self.core.read_namespaced_service(key.name, key.namespace)
                else:
                    raise ValueError(f"Unsupported kind {kind!r}")
        except NotFound:
            return None
        return self.api_client.sanitize_for_serialization(obj)

    def create(self, spec: ManagedResourceSpec) -> None:
        with _classified():
            if spec.kind == DEPLOYMENT:
                self.apps.create_namespaced_deployment(spec.key.namespace, body=spec.manifest)
            elif spec.kind == SERVICE:
                self.core.create_namespaced_service(spec.key.namespace, body=spec.manifest)
            else:
                raise ValueError(f"Unsupported kind {spec.kind!r}")

    def patch(self, patch: FieldPatch) -> None:
        # Only Deployments have owned fields. A dict body is sent as a
        # strategic merge patch, so containers are matched by name.
        if patch.kind != DEPLOYMENT:
            raise ValueError(f"Unsupported kind {patch.kind!r}")
        with _classified():
            self.apps.patch_namespaced_deployment(patch.key.name, patch.key.namespace, body=patch.body())
