"""Manifest object sets and helpers shared by the object builders.

Objects are plain dictionaries in Kubernetes manifest shape. An ObjectSet
groups the objects destined for one environment and guarantees that no two
objects share the same kind, namespace and name.
"""

from __future__ import annotations

import base64
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

Manifest = dict[str, Any]
ObjectKey = tuple[str, str, str]

GENERIC_KUBECONFIG_VOLUME_NAME = "kubeconfig"
GENERIC_KUBECONFIG_MOUNT_PATH = "/var/run/secrets/gardener.cloud/shoot/generic-kubeconfig"
SHOOT_ACCESS_SECRET_PREFIX = "shoot-access-"


def object_key(obj: Manifest) -> ObjectKey:
    """Return (kind, namespace, name) for a manifest."""
    metadata = obj.get("metadata", {})
    return (obj.get("kind", ""), metadata.get("namespace", ""), metadata.get("name", ""))


@dataclass
class ObjectSet:
    """Objects destined for one environment."""

    name: str
    objects: list[Manifest] = field(default_factory=list)

    def add(self, *objects: Manifest) -> None:
        """Add objects to the set.

        Raises:
            ValueError: If an object has no kind or name, or repeats an
                object already in the set.
        """
        known = {object_key(obj) for obj in self.objects}
        for obj in objects:
            key = object_key(obj)
            if not key[0] or not key[2]:
                raise ValueError(f"object in set '{self.name}' needs kind and name: {key}")
            if key in known:
                raise ValueError(f"duplicate object {key} in set '{self.name}'")
            known.add(key)
            self.objects.append(obj)

    def find(self, kind: str, name: str) -> Manifest | None:
        for obj in self.objects:
            obj_kind, _, obj_name = object_key(obj)
            if obj_kind == kind and obj_name == name:
                return obj
        return None

    def keys(self) -> list[ObjectKey]:
        return [object_key(obj) for obj in self.objects]

    def __iter__(self) -> Iterator[Manifest]:
        return iter(self.objects)

    def __len__(self) -> int:
        return len(self.objects)


def serialize_objects(object_set: ObjectSet) -> dict[str, str]:
    """Serialize every object to YAML, keyed by a stable file name."""
    serialized: dict[str, str] = {}
    for obj in object_set:
        kind, namespace, name = object_key(obj)
        filename = f"{kind.lower()}__{namespace}__{name.replace('.', '_')}.yaml"
        serialized[filename] = yaml.safe_dump(obj, sort_keys=False)
    return dict(sorted(serialized.items()))


# =============================================================================
# Builders
# =============================================================================


def metadata(
    name: str,
    namespace: str | None = None,
    labels: Mapping[str, str] | None = None,
    annotations: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    meta: dict[str, Any] = {"name": name}
    if namespace:
        meta["namespace"] = namespace
    if labels:
        meta["labels"] = dict(labels)
    if annotations:
        meta["annotations"] = dict(annotations)
    return meta


def config_map(
    name: str,
    namespace: str,
    data: Mapping[str, str],
    labels: Mapping[str, str] | None = None,
) -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": metadata(name, namespace, labels),
        "data": dict(data),
    }


def secret(
    name: str,
    namespace: str,
    *,
    data: Mapping[str, bytes] | None = None,
    string_data: Mapping[str, str] | None = None,
    labels: Mapping[str, str] | None = None,
    annotations: Mapping[str, str] | None = None,
) -> Manifest:
    """Build an Opaque Secret; binary ``data`` is base64 encoded."""
    obj: Manifest = {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": metadata(name, namespace, labels, annotations),
        "type": "Opaque",
    }
    if data:
        obj["data"] = {
            key: base64.b64encode(value).decode("ascii") for key, value in data.items()
        }
    if string_data:
        obj["stringData"] = dict(string_data)
    return obj


def dns_names_for_service(name: str, namespace: str) -> tuple[str, ...]:
    """All in-cluster DNS names a Service is reachable under."""
    return (
        name,
        f"{name}.{namespace}",
        f"{name}.{namespace}.svc",
        f"{name}.{namespace}.svc.cluster.local",
    )


def shoot_access_secret(
    name: str,
    namespace: str,
    service_account_name: str,
    service_account_namespace: str = "kube-system",
) -> Manifest:
    """Secret that the token requestor fills with a token for a shoot service account."""
    return secret(
        f"{SHOOT_ACCESS_SECRET_PREFIX}{name}",
        namespace,
        labels={
            "resources.gardener.cloud/purpose": "token-requestor",
            "resources.gardener.cloud/class": "shoot",
        },
        annotations={
            "serviceaccount.resources.gardener.cloud/name": service_account_name,
            "serviceaccount.resources.gardener.cloud/namespace": service_account_namespace,
        },
    )


def inject_generic_kubeconfig(
    workload: Manifest,
    generic_kubeconfig_secret_name: str,
    access_secret_name: str,
) -> None:
    """Mount the generic shoot kubeconfig plus the access token into a workload.

    Every container of the pod template gets the mount. The workload is
    modified in place.

    Raises:
        ValueError: If the workload has no pod template or containers.
    """
    try:
        pod_spec = workload["spec"]["template"]["spec"]
        containers = pod_spec["containers"]
    except KeyError as e:
        raise ValueError(f"workload has no pod template: {e}") from e

    if not containers:
        raise ValueError("workload has no containers")

    volumes = pod_spec.setdefault("volumes", [])
    if not any(v.get("name") == GENERIC_KUBECONFIG_VOLUME_NAME for v in volumes):
        volumes.append(
            {
                "name": GENERIC_KUBECONFIG_VOLUME_NAME,
                "projected": {
                    "defaultMode": 420,
                    "sources": [
                        {
                            "secret": {
                                "name": generic_kubeconfig_secret_name,
                                "items": [{"key": "kubeconfig", "path": "kubeconfig"}],
                                "optional": False,
                            }
                        },
                        {
                            "secret": {
                                "name": access_secret_name,
                                "items": [{"key": "token", "path": "token"}],
                                "optional": False,
                            }
                        },
                    ],
                },
            }
        )

    for container in containers:
        mounts = container.setdefault("volumeMounts", [])
        if not any(m.get("name") == GENERIC_KUBECONFIG_VOLUME_NAME for m in mounts):
            mounts.append(
                {
                    "name": GENERIC_KUBECONFIG_VOLUME_NAME,
                    "mountPath": GENERIC_KUBECONFIG_MOUNT_PATH,
                    "readOnly": True,
                }
            )
