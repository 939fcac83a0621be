"""Target Deployment and Service for a Website.

These functions hold the operator's whole business policy. They never touch
the cluster, and the same inputs always build the same spec.
"""
from __future__ import annotations

from typing import Any

from .models import DEPLOYMENT, SERVICE, ManagedResourceSpec, ObjectKey, Website

IMAGE_PREFIX = "abangser/todo-local-storage"
CONTAINER_NAME = "nginx"
REPLICAS = 2
CONTAINER_PORT = 80
SERVICE_PORT = 80
NODE_PORT = 31000

# The one field of the Deployment this operator owns.
IMAGE_FIELD = f"spec.template.spec.containers[name={CONTAINER_NAME}].image"


def ownership_labels(name: str) -> dict[str, str]:
    return {"website": name, "type": "Website"}


def image_for(image_tag: str) -> str:
    return f"{IMAGE_PREFIX}:{image_tag}"


def _metadata(key: ObjectKey) -> dict[str, Any]:
    return {"name": key.name, "namespace": key.namespace, "labels": ownership_labels(key.name)}


def build_deployment_spec(key: ObjectKey, image_tag: str) -> ManagedResourceSpec:
    labels = ownership_labels(key.name)
    manifest = {
        "apiVersion": "apps/v1",
        "kind": DEPLOYMENT,
        "metadata": _metadata(key),
        "spec": {
            "replicas": REPLICAS,
            "selector": {"matchLabels": ownership_labels(key.name)},
            "template": {
                "metadata": {"labels": ownership_labels(key.name)},
                "spec": {
                    "containers": [
                        {
                            "name": CONTAINER_NAME,
                            "image": image_for(image_tag),
                            "ports": [{"containerPort": CONTAINER_PORT}],
                        }
                    ]
                },
            },
        },
    }
    return ManagedResourceSpec(kind=DEPLOYMENT, key=key, labels=labels, manifest=manifest)


def build_service_spec(key: ObjectKey) -> ManagedResourceSpec:
    labels = ownership_labels(key.name)
    manifest = {
        "apiVersion": "v1",
        "kind": SERVICE,
        "metadata": _metadata(key),
        "spec": {
            "type": "NodePort",
            "ports": [{"port": SERVICE_PORT, "nodePort": NODE_PORT}],
            "selector": ownership_labels(key.name),
        },
    }
    return ManagedResourceSpec(kind=SERVICE, key=key, labels=labels, manifest=manifest)


def build_specs(website: Website) -> list[ManagedResourceSpec]:
    """All managed resources for a Website, in convergence order."""
    return [
        build_deployment_spec(website.key, website.image_tag),
        build_service_spec(website.key),
    ]


# Fields this operator corrects on existing resources, per kind. Anything not
# listed here belongs to other actors and is never written after creation.
OWNED_FIELDS: dict[str, tuple[str, ...]] = {
    DEPLOYMENT: (IMAGE_FIELD,),
    SERVICE: (),
}
