"""Object sets for the seed and the shoot.

The seed set runs the audit webhook backend next to the tenant's API server;
the shoot set runs the audittailer that receives forwarded events inside the
tenant cluster.
"""

from __future__ import annotations

import yaml

from .backends import (
    AUDITTAILER_NAME,
    AUDITTAILER_NAMESPACE,
    BACKEND_INCLUDE_PATTERN,
    FORWARDER_SERVICE_ACCOUNT,
    BackendComposition,
)
from .credentials import Credential
from .fluentbit import FluentBitConfig, Input
from .images import Image
from .models import AuditConfig
from .objects import Manifest, ObjectSet, config_map, metadata, secret

WEBHOOK_BACKEND_NAME = "audit-webhook-backend"
WEBHOOK_BACKEND_PORT = 9880
WEBHOOK_CONFIG_SECRET_NAME = "audit-webhook-config"
WEBHOOK_CONFIG_KEY = "audit-webhook-config.yaml"
WEBHOOK_CONTEXT_NAME = "audit-webhook"

AUDIT_POLICY_CONFIG_MAP_NAME = "audit-policy"
AUDIT_POLICY_KEY = "audit-policy.yaml"

FLUENT_BIT_CONFIG_MAP_NAME = "fluent-bit-config"
FLUENT_BIT_CONFIG_KEY = "fluent-bit.conf"
FLUENT_BIT_REPLICAS = 2
AUDIT_DATA_VOLUME = "audit-data"

AUDITTAILER_PORT = 24224
AUDITTAILER_CONFIG_MAP_NAME = "audittailer-config"

APISERVER_LABELS = {"app": "kubernetes", "role": "apiserver"}

AUDITTAILER_FLUENTD_CONFIG = """\
<source>
  @type forward
  port 24224
  bind 0.0.0.0
  <transport tls>
    ca_path                   /fluentd/etc/ssl/ca.crt
    cert_path                 /fluentd/etc/ssl/tls.crt
    private_key_path          /fluentd/etc/ssl/tls.key
    client_cert_auth          true
  </transport>
</source>
<match **>
  @type stdout
  <buffer>
    @type file
    path /fluentbuffer/auditlog-*
    chunk_limit_size          256Mb
  </buffer>
  <format>
    @type json
  </format>
</match>
"""


def webhook_kubeconfig(namespace: str) -> str:
    """Kubeconfig pointing the API server's audit webhook at the backend."""
    server = (
        f"http://{WEBHOOK_BACKEND_NAME}.{namespace}.svc.cluster.local:"
        f"{WEBHOOK_BACKEND_PORT}/audit"
    )
    kubeconfig = {
        "apiVersion": "v1",
        "kind": "Config",
        "current-context": WEBHOOK_CONTEXT_NAME,
        "clusters": [{"name": WEBHOOK_CONTEXT_NAME, "cluster": {"server": server}}],
        "contexts": [
            {
                "name": WEBHOOK_CONTEXT_NAME,
                "context": {"cluster": WEBHOOK_CONTEXT_NAME, "user": WEBHOOK_CONTEXT_NAME},
            }
        ],
        "users": [{"name": WEBHOOK_CONTEXT_NAME, "user": {}}],
        "preferences": {},
    }
    return yaml.safe_dump(kubeconfig, sort_keys=False)


def receiver_fluent_bit_config() -> FluentBitConfig:
    """Webhook receiver: HTTP input, outputs pulled in from backend files."""
    return FluentBitConfig(
        inputs=[Input({"Name": "http"})],
        includes=[BACKEND_INCLUDE_PATTERN],
    )


# =============================================================================
# Seed
# =============================================================================


def seed_objects(
    config: AuditConfig,
    *,
    namespace: str,
    fluent_bit_image: Image,
    composition: BackendComposition,
) -> ObjectSet:
    """Build the seed object set.

    Args:
        config: Defaulted audit configuration.
        namespace: The tenant's namespace in the seed.
        fluent_bit_image: Image of the webhook backend.
        composition: Backend outputs and the objects they contribute.
    """
    objects = ObjectSet("seed")

    fluent_bit_files = {FLUENT_BIT_CONFIG_KEY: receiver_fluent_bit_config().generate()}
    fluent_bit_files.update(composition.config_files)

    objects.add(
        secret(
            WEBHOOK_CONFIG_SECRET_NAME,
            namespace,
            string_data={WEBHOOK_CONFIG_KEY: webhook_kubeconfig(namespace)},
        ),
        config_map(
            AUDIT_POLICY_CONFIG_MAP_NAME,
            namespace,
            {AUDIT_POLICY_KEY: config.audit_policy or ""},
        ),
        config_map(FLUENT_BIT_CONFIG_MAP_NAME, namespace, fluent_bit_files),
        _webhook_backend_service(namespace),
        _webhook_backend_statefulset(config, namespace, fluent_bit_image, composition),
        *_apiserver_network_policies(namespace),
    )
    objects.add(*composition.objects)
    return objects


def _webhook_backend_service(namespace: str) -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": metadata(WEBHOOK_BACKEND_NAME, namespace),
        "spec": {
            "selector": {"app": WEBHOOK_BACKEND_NAME},
            "ports": [{"name": "http", "port": WEBHOOK_BACKEND_PORT, "protocol": "TCP"}],
        },
    }


def _webhook_backend_statefulset(
    config: AuditConfig,
    namespace: str,
    image: Image,
    composition: BackendComposition,
) -> Manifest:
    persistence = config.persistence
    size = persistence.size.strip() if persistence and persistence.size else ""
    storage_class = persistence.storage_class_name if persistence else None

    claim_spec: dict = {
        "accessModes": ["ReadWriteOnce"],
        "resources": {"requests": {"storage": size}},
    }
    if storage_class:
        claim_spec["storageClassName"] = storage_class

    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": metadata(WEBHOOK_BACKEND_NAME, namespace),
        "spec": {
            "replicas": FLUENT_BIT_REPLICAS,
            "serviceName": WEBHOOK_BACKEND_NAME,
            "selector": {"matchLabels": {"app": WEBHOOK_BACKEND_NAME}},
            "template": {
                "metadata": {
                    "labels": {
                        "app": WEBHOOK_BACKEND_NAME,
                        "networking.gardener.cloud/from-prometheus": "allowed",
                        "networking.gardener.cloud/to-dns": "allowed",
                        "networking.gardener.cloud/to-public-networks": "allowed",
                    },
                    "annotations": {"scheduler.alpha.kubernetes.io/critical-pod": ""},
                },
                "spec": {
                    "containers": [
                        {
                            "name": "fluent-bit",
                            "image": str(image),
                            "args": [
                                "--storage_path=/data",
                                f"--config=/config/{FLUENT_BIT_CONFIG_KEY}",
                            ],
                            "volumeMounts": [
                                {"name": "config", "mountPath": "/config"},
                                {"name": AUDIT_DATA_VOLUME, "mountPath": "/data"},
                                *composition.receiver_volume_mounts,
                            ],
                        }
                    ],
                    "volumes": [
                        {"name": "config", "configMap": {"name": FLUENT_BIT_CONFIG_MAP_NAME}},
                        *composition.receiver_volumes,
                    ],
                },
            },
            "volumeClaimTemplates": [
                {"metadata": {"name": AUDIT_DATA_VOLUME}, "spec": claim_spec}
            ],
        },
    }


def _apiserver_network_policies(namespace: str) -> list[Manifest]:
    backend_selector = {"matchLabels": {"app": WEBHOOK_BACKEND_NAME}}
    apiserver_selector = {"matchLabels": dict(APISERVER_LABELS)}
    return [
        {
            "apiVersion": "networking.k8s.io/v1",
            "kind": "NetworkPolicy",
            "metadata": metadata(
                f"allow-to-{WEBHOOK_BACKEND_NAME}-from-kube-apiserver", namespace
            ),
            "spec": {
                "podSelector": backend_selector,
                "ingress": [{"from": [{"podSelector": apiserver_selector}]}],
                "policyTypes": ["Ingress"],
            },
        },
        {
            "apiVersion": "networking.k8s.io/v1",
            "kind": "NetworkPolicy",
            "metadata": metadata(
                f"allow-from-kube-apiserver-to-{WEBHOOK_BACKEND_NAME}", namespace
            ),
            "spec": {
                "podSelector": apiserver_selector,
                "egress": [{"to": [{"podSelector": backend_selector}]}],
                "policyTypes": ["Egress"],
            },
        },
    ]


# =============================================================================
# Shoot
# =============================================================================


def shoot_objects(
    *,
    audittailer_image: Image,
    server_credential: Credential,
    client_credential: Credential,
) -> ObjectSet:
    """Build the shoot object set.

    The server credential secures the audittailer's TLS transport. The client
    credential is published for the forwarding gateway, which looks it up by
    name in the audit namespace.
    """
    objects = ObjectSet("shoot")
    namespace = AUDITTAILER_NAMESPACE
    app_labels = {"app": AUDITTAILER_NAME}

    objects.add(
        {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": metadata(namespace, labels={"k8s-app": AUDITTAILER_NAME}),
        },
        config_map(
            AUDITTAILER_CONFIG_MAP_NAME,
            namespace,
            {"fluent.conf": AUDITTAILER_FLUENTD_CONFIG},
            labels={"app.kubernetes.io/name": AUDITTAILER_NAME},
        ),
        secret(server_credential.secret_name, namespace, data=server_credential.data()),
        secret(client_credential.secret_name, namespace, data=client_credential.data()),
        _audittailer_deployment(audittailer_image, server_credential.secret_name),
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": metadata(AUDITTAILER_NAME, namespace, app_labels),
            "spec": {
                "selector": dict(app_labels),
                "ports": [{"port": AUDITTAILER_PORT, "targetPort": AUDITTAILER_PORT}],
            },
        },
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "Role",
            "metadata": metadata(AUDITTAILER_NAME, namespace),
            "rules": [
                {
                    "apiGroups": [""],
                    "resources": ["services", "secrets"],
                    "verbs": ["get", "list"],
                }
            ],
        },
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "RoleBinding",
            "metadata": metadata(AUDITTAILER_NAME, namespace),
            "subjects": [
                {
                    "kind": "ServiceAccount",
                    "name": FORWARDER_SERVICE_ACCOUNT,
                    "namespace": "kube-system",
                }
            ],
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "Role",
                "name": AUDITTAILER_NAME,
            },
        },
    )
    return objects


def _audittailer_deployment(image: Image, certs_secret_name: str) -> Manifest:
    labels = {"k8s-app": AUDITTAILER_NAME}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": metadata(AUDITTAILER_NAME, AUDITTAILER_NAMESPACE, labels),
        "spec": {
            "selector": {"matchLabels": dict(labels)},
            "template": {
                "metadata": {"labels": {**labels, "app": AUDITTAILER_NAME}},
                "spec": {
                    "automountServiceAccountToken": False,
                    "restartPolicy": "Always",
                    "containers": [
                        {
                            "name": AUDITTAILER_NAME,
                            "image": str(image),
                            "imagePullPolicy": "IfNotPresent",
                            # Caps fluentd memory growth
                            "env": [
                                {"name": "RUBY_GC_HEAP_OLDOBJECT_LIMIT_FACTOR", "value": "1.2"}
                            ],
                            "ports": [{"containerPort": AUDITTAILER_PORT, "protocol": "TCP"}],
                            "volumeMounts": [
                                {"name": "fluentd-config", "mountPath": "/fluentd/etc"},
                                {"name": "fluentd-certs", "mountPath": "/fluentd/etc/ssl"},
                                {"name": "fluentbuffer", "mountPath": "/fluentbuffer"},
                            ],
                            "resources": {
                                "requests": {"cpu": "100m", "memory": "200Mi"},
                                "limits": {"cpu": "150m", "memory": "512Mi"},
                            },
                            "securityContext": {
                                "runAsUser": 65534,
                                "allowPrivilegeEscalation": False,
                                "seccompProfile": {"type": "RuntimeDefault"},
                                "capabilities": {"drop": ["ALL"]},
                            },
                        }
                    ],
                    "volumes": [
                        {
                            "name": "fluentd-config",
                            "configMap": {"name": AUDITTAILER_CONFIG_MAP_NAME},
                        },
                        {"name": "fluentd-certs", "secret": {"secretName": certs_secret_name}},
                        {"name": "fluentbuffer", "emptyDir": {}},
                    ],
                },
            },
        },
    }
