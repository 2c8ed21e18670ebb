"""Kubernetes-backed credential store and resource installer.

Both adapters are synchronous and talk to the API server through the
official ``kubernetes`` client. Callers run them in an executor.

Resource sets are installed the Gardener way: the serialized objects go into
a data Secret that a ``ManagedResource`` references; the resource manager
applies and garbage-collects the objects from there.
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from .credentials import CertType, Credential
from .errors import CredentialStoreError, InstallerError
from .objects import ObjectSet, serialize_objects

logger = logging.getLogger(__name__)

MANAGED_BY_LABEL = "managed-by"
MANAGER_IDENTITY_LABEL = "manager-identity"
MANAGER_IDENTITY = "audit-extension"
ORIGIN_LABEL = "origin"

MANAGED_RESOURCE_GROUP = "resources.gardener.cloud"
MANAGED_RESOURCE_VERSION = "v1alpha1"
MANAGED_RESOURCE_PLURAL = "managedresources"
MANAGED_RESOURCE_SECRET_PREFIX = "managedresource-"

SEED_SET_NAME = "seed"

# Upper bound for every single API server call
API_REQUEST_TIMEOUT_SECONDS = 30

_ANNOTATION_PREFIX = "audit.metal-stack.io/"


def _not_found(e: ApiException) -> bool:
    return e.status == 404


def _b64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


# =============================================================================
# Credential store
# =============================================================================


class KubernetesCredentialStore:
    """Persists credentials as labelled Secrets in one namespace."""

    def __init__(self, namespace: str, core_api: client.CoreV1Api | None = None) -> None:
        self._namespace = namespace
        self._core = core_api or client.CoreV1Api()

    def load(self, name: str) -> Credential | None:
        """Load a credential, or None if it was never saved.

        Raises:
            CredentialStoreError: If the Secret cannot be read or decoded.
        """
        try:
            stored = self._core.read_namespaced_secret(
                name, self._namespace, _request_timeout=API_REQUEST_TIMEOUT_SECONDS
            )
        except ApiException as e:
            if _not_found(e):
                return None
            raise CredentialStoreError(
                f"failed to read credential '{name}' in {self._namespace}: {e.reason}"
            ) from e

        annotations = stored.metadata.annotations or {}
        data = stored.data or {}
        try:
            ca_certificate = data.get("ca_certificate")
            return Credential(
                name=name,
                cert_type=CertType(annotations[f"{_ANNOTATION_PREFIX}cert-type"]),
                certificate=base64.b64decode(data["certificate"]),
                private_key=base64.b64decode(data["private_key"]),
                not_after=datetime.fromisoformat(annotations[f"{_ANNOTATION_PREFIX}not-after"]),
                spec_checksum=annotations[f"{_ANNOTATION_PREFIX}spec-checksum"],
                ca_certificate=base64.b64decode(ca_certificate) if ca_certificate else None,
                issuer_fingerprint=annotations.get(f"{_ANNOTATION_PREFIX}issuer-fingerprint"),
            )
        except (KeyError, ValueError) as e:
            raise CredentialStoreError(
                f"stored credential '{name}' in {self._namespace} is malformed: {e}"
            ) from e

    def save(self, credential: Credential) -> None:
        """Create or replace the Secret holding ``credential``.

        Raises:
            CredentialStoreError: If the Secret cannot be written.
        """
        data = {
            "certificate": _b64(credential.certificate),
            "private_key": _b64(credential.private_key),
        }
        if credential.ca_certificate:
            data["ca_certificate"] = _b64(credential.ca_certificate)

        annotations = {
            f"{_ANNOTATION_PREFIX}cert-type": credential.cert_type.value,
            f"{_ANNOTATION_PREFIX}not-after": credential.not_after.isoformat(),
            f"{_ANNOTATION_PREFIX}spec-checksum": credential.spec_checksum,
        }
        if credential.issuer_fingerprint:
            annotations[f"{_ANNOTATION_PREFIX}issuer-fingerprint"] = credential.issuer_fingerprint

        body = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {
                "name": credential.name,
                "namespace": self._namespace,
                "labels": {
                    MANAGED_BY_LABEL: "secrets-manager",
                    MANAGER_IDENTITY_LABEL: MANAGER_IDENTITY,
                },
                "annotations": annotations,
            },
            "type": "Opaque",
            "data": data,
        }

        try:
            _upsert_secret(self._core, self._namespace, credential.name, body)
        except ApiException as e:
            raise CredentialStoreError(
                f"failed to save credential '{credential.name}' in {self._namespace}: {e.reason}"
            ) from e

        logger.debug(
            "Saved credential",
            extra={"credential": credential.name, "namespace": self._namespace},
        )


def _upsert_secret(core: client.CoreV1Api, namespace: str, name: str, body: dict) -> None:
    try:
        core.replace_namespaced_secret(
            name, namespace, body, _request_timeout=API_REQUEST_TIMEOUT_SECONDS
        )
    except ApiException as e:
        if not _not_found(e):
            raise
        core.create_namespaced_secret(
            namespace, body, _request_timeout=API_REQUEST_TIMEOUT_SECONDS
        )


# =============================================================================
# Resource installer
# =============================================================================


class ManagedResourceInstaller:
    """Installs object sets as Gardener ManagedResources."""

    def __init__(
        self,
        namespace: str,
        core_api: client.CoreV1Api | None = None,
        custom_api: client.CustomObjectsApi | None = None,
    ) -> None:
        self._namespace = namespace
        self._core = core_api or client.CoreV1Api()
        self._custom = custom_api or client.CustomObjectsApi()

    def install_set(self, slot: str, objects: ObjectSet) -> None:
        """Create or update the data Secret and ManagedResource for ``slot``.

        Sets named ``seed`` are applied by the seed's resource manager class;
        everything else targets the shoot.

        Raises:
            InstallerError: If either object cannot be written.
        """
        secret_name = f"{MANAGED_RESOURCE_SECRET_PREFIX}{slot}"
        labels = {ORIGIN_LABEL: MANAGER_IDENTITY}

        secret_body = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"name": secret_name, "namespace": self._namespace, "labels": labels},
            "type": "Opaque",
            "data": {
                key: _b64(value.encode("utf-8"))
                for key, value in serialize_objects(objects).items()
            },
        }

        spec: dict[str, Any] = {
            "secretRefs": [{"name": secret_name}],
            "keepObjects": False,
        }
        if objects.name == SEED_SET_NAME:
            spec["class"] = "seed"
        else:
            spec["injectLabels"] = {ORIGIN_LABEL: MANAGER_IDENTITY}

        resource_body = {
            "apiVersion": f"{MANAGED_RESOURCE_GROUP}/{MANAGED_RESOURCE_VERSION}",
            "kind": "ManagedResource",
            "metadata": {"name": slot, "namespace": self._namespace, "labels": labels},
            "spec": spec,
        }

        try:
            _upsert_secret(self._core, self._namespace, secret_name, secret_body)
            self._upsert_managed_resource(slot, resource_body)
        except ApiException as e:
            raise InstallerError(
                f"failed to install resource set '{slot}' in {self._namespace}: {e.reason}"
            ) from e

        logger.info(
            "Installed resource set",
            extra={"slot": slot, "namespace": self._namespace, "objects": len(objects)},
        )

    def remove_set(self, slot: str) -> None:
        """Delete the ManagedResource and data Secret; absent objects are fine.

        Raises:
            InstallerError: If a delete fails for any reason but absence.
        """
        try:
            self._custom.delete_namespaced_custom_object(
                MANAGED_RESOURCE_GROUP,
                MANAGED_RESOURCE_VERSION,
                self._namespace,
                MANAGED_RESOURCE_PLURAL,
                slot,
                _request_timeout=API_REQUEST_TIMEOUT_SECONDS,
            )
        except ApiException as e:
            if not _not_found(e):
                raise InstallerError(
                    f"failed to delete managed resource '{slot}': {e.reason}"
                ) from e

        try:
            self._core.delete_namespaced_secret(
                f"{MANAGED_RESOURCE_SECRET_PREFIX}{slot}",
                self._namespace,
                _request_timeout=API_REQUEST_TIMEOUT_SECONDS,
            )
        except ApiException as e:
            if not _not_found(e):
                raise InstallerError(
                    f"failed to delete data secret of '{slot}': {e.reason}"
                ) from e

        logger.info("Requested removal of resource set", extra={"slot": slot})

    def is_removed(self, slot: str) -> bool:
        """Report whether the ManagedResource for ``slot`` is gone.

        Raises:
            InstallerError: If the lookup fails for any reason but absence.
        """
        try:
            self._custom.get_namespaced_custom_object(
                MANAGED_RESOURCE_GROUP,
                MANAGED_RESOURCE_VERSION,
                self._namespace,
                MANAGED_RESOURCE_PLURAL,
                slot,
                _request_timeout=API_REQUEST_TIMEOUT_SECONDS,
            )
        except ApiException as e:
            if _not_found(e):
                return True
            raise InstallerError(f"failed to look up managed resource '{slot}': {e.reason}") from e
        return False

    def _upsert_managed_resource(self, slot: str, body: dict) -> None:
        try:
            self._custom.patch_namespaced_custom_object(
                MANAGED_RESOURCE_GROUP,
                MANAGED_RESOURCE_VERSION,
                self._namespace,
                MANAGED_RESOURCE_PLURAL,
                slot,
                body,
                _request_timeout=API_REQUEST_TIMEOUT_SECONDS,
            )
        except ApiException as e:
            if not _not_found(e):
                raise
            self._custom.create_namespaced_custom_object(
                MANAGED_RESOURCE_GROUP,
                MANAGED_RESOURCE_VERSION,
                self._namespace,
                MANAGED_RESOURCE_PLURAL,
                body,
                _request_timeout=API_REQUEST_TIMEOUT_SECONDS,
            )
