"""Backend composition.

Decides, from the enabled backends alone, which Fluent Bit outputs the log
receiver gets and which auxiliary objects the forwarding topology needs.
Every backend contributes its own ``*.backend.conf`` file, picked up by the
receiver's ``@INCLUDE`` pattern, so enabling both backends yields two
independent outputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .credentials import Credential
from .fluentbit import FluentBitConfig, Output
from .images import Image
from .models import AuditBackends
from .objects import (
    GENERIC_KUBECONFIG_MOUNT_PATH,
    Manifest,
    inject_generic_kubeconfig,
    metadata,
    secret,
    shoot_access_secret,
)

BACKEND_INCLUDE_PATTERN = "*.backend.conf"
LOG_BACKEND_FILE = "log.backend.conf"
CLUSTER_FORWARDING_BACKEND_FILE = "clusterforwarding.backend.conf"

AUDIT_MATCH = "audit"

# Cluster forwarding topology
FORWARDER_NAME = "audit-cluster-forwarding-vpn-gateway"
FORWARDER_CONTAINER_NAME = "audit-forwarder"
FORWARDER_PORT = 9090
FORWARDER_SERVICE_ACCOUNT = "audittailer-client"
FORWARDING_CERTS_VOLUME = "cluster-forwarding-certs"
FORWARDING_CERTS_PATH = "/certs/cluster-forwarding"
GENERIC_KUBECONFIG_PATH = f"{GENERIC_KUBECONFIG_MOUNT_PATH}/kubeconfig"

# Receiver inside the tenant cluster
AUDITTAILER_NAME = "audittailer"
AUDITTAILER_NAMESPACE = "audit"


@dataclass
class ForwardingContext:
    """Inputs the forwarding topology needs besides the backend switches."""

    namespace: str
    generic_kubeconfig_secret_name: str
    client_credential: Credential
    forwarder_image: Image


@dataclass
class BackendComposition:
    """Outputs and objects contributed by the enabled backends."""

    config_files: dict[str, str] = field(default_factory=dict)
    objects: list[Manifest] = field(default_factory=list)
    receiver_volumes: list[dict] = field(default_factory=list)
    receiver_volume_mounts: list[dict] = field(default_factory=list)


def log_output() -> Output:
    output = Output()
    output.add("Name", "stdout")
    output.add("Match", AUDIT_MATCH)
    return output


def cluster_forwarding_output() -> Output:
    output = Output()
    output.add("Name", "forward")
    output.add("Match", AUDIT_MATCH)
    output.add("Host", FORWARDER_NAME)
    output.add("Port", str(FORWARDER_PORT))
    output.add("Require_ack_response", "True")
    output.add("Compress", "gzip")
    output.add("tls", "On")
    output.add("tls.verify", "On")
    output.add("tls.debug", "2")
    output.add("tls.ca_file", f"{FORWARDING_CERTS_PATH}/ca.crt")
    output.add("tls.crt_file", f"{FORWARDING_CERTS_PATH}/tls.crt")
    output.add("tls.key_file", f"{FORWARDING_CERTS_PATH}/tls.key")
    output.add("tls.vhost", AUDITTAILER_NAME)
    return output


def compose_backends(
    backends: AuditBackends, forwarding: ForwardingContext
) -> BackendComposition:
    """Compose backend outputs and the objects they need.

    Args:
        backends: Defaulted backend switches.
        forwarding: Names and image used when cluster forwarding is enabled.

    Returns:
        Config files keyed by file name, extra seed objects and the volumes
        the log receiver must mount. Empty when no backend is enabled.
    """
    composition = BackendComposition()

    if backends.log_enabled:
        composition.config_files[LOG_BACKEND_FILE] = FluentBitConfig(
            outputs=[log_output()]
        ).generate()

    if backends.cluster_forwarding_enabled:
        composition.config_files[CLUSTER_FORWARDING_BACKEND_FILE] = FluentBitConfig(
            outputs=[cluster_forwarding_output()]
        ).generate()

        client = forwarding.client_credential
        access_secret = shoot_access_secret(
            FORWARDER_NAME, forwarding.namespace, FORWARDER_SERVICE_ACCOUNT
        )
        deployment = forwarder_deployment(forwarding)
        inject_generic_kubeconfig(
            deployment,
            forwarding.generic_kubeconfig_secret_name,
            access_secret["metadata"]["name"],
        )
        composition.objects.extend(
            [
                access_secret,
                secret(client.secret_name, forwarding.namespace, data=client.data()),
                deployment,
                forwarder_service(forwarding.namespace),
            ]
        )

        composition.receiver_volumes.append(
            {
                "name": FORWARDING_CERTS_VOLUME,
                "secret": {"secretName": client.secret_name},
            }
        )
        composition.receiver_volume_mounts.append(
            {
                "name": FORWARDING_CERTS_VOLUME,
                "mountPath": FORWARDING_CERTS_PATH,
                "readOnly": True,
            }
        )

    return composition


def forwarder_deployment(forwarding: ForwardingContext) -> Manifest:
    """Gateway relaying audit events from the receiver into the tenant cluster."""
    labels = {"app": FORWARDER_NAME}
    env = {
        "AUDIT_KUBECFG": GENERIC_KUBECONFIG_PATH,
        "AUDIT_NAMESPACE": AUDITTAILER_NAMESPACE,
        "AUDIT_SERVICE_NAME": AUDITTAILER_NAME,
        "AUDIT_SECRET_NAME": forwarding.client_credential.secret_name,
        "AUDIT_TLS_CA_FILE": "ca.crt",
        "AUDIT_TLS_CRT_FILE": "tls.crt",
        "AUDIT_TLS_KEY_FILE": "tls.key",
        "AUDIT_TLS_VHOST": AUDITTAILER_NAME,
    }
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": metadata(FORWARDER_NAME, forwarding.namespace, labels),
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": dict(labels)},
            "template": {
                "metadata": {
                    "labels": {
                        **labels,
                        "networking.gardener.cloud/to-dns": "allowed",
                        "networking.gardener.cloud/to-shoot-apiserver": "allowed",
                    }
                },
                "spec": {
                    "containers": [
                        {
                            "name": FORWARDER_CONTAINER_NAME,
                            "image": str(forwarding.forwarder_image),
                            "imagePullPolicy": "IfNotPresent",
                            "env": [{"name": k, "value": v} for k, v in env.items()],
                            "ports": [{"containerPort": FORWARDER_PORT, "protocol": "TCP"}],
                        }
                    ],
                },
            },
        },
    }


def forwarder_service(namespace: str) -> Manifest:
    labels = {"app": FORWARDER_NAME}
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": metadata(FORWARDER_NAME, namespace, labels),
        "spec": {
            "selector": dict(labels),
            "ports": [
                {
                    "name": "forward",
                    "port": FORWARDER_PORT,
                    "targetPort": FORWARDER_PORT,
                    "protocol": "TCP",
                }
            ],
        },
    }
