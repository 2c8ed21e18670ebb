"""Lifecycle actuator for the audit extension.

Each operation works on one tenant cluster, identified by its namespace in
the seed:
1. Decode the provider configuration and apply defaults
2. Resolve the audittailer certificate chain
3. Compose the enabled backends into Fluent Bit outputs and extra objects
4. Build the seed and shoot object sets in memory
5. Install both sets concurrently under their slot names

Deletion removes both slots and waits, bounded by a deadline, until the
resource manager reports them gone.

The invoking controller serializes operations per tenant and owns retries;
nothing here retries or locks.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .backends import AUDITTAILER_NAME, AUDITTAILER_NAMESPACE, ForwardingContext, compose_backends
from .config import ControllerConfig
from .credentials import CertType, Credential, CredentialSpec, SecretsManager
from .decoder import decode_provider_config
from .images import ImageVector
from .installer import ResourceInstaller, run_installer_call, wait_until_removed
from .manifests import seed_objects, shoot_objects
from .models import AuditBackends, AuditConfig, apply_defaults, parse_storage_size
from .objects import ObjectSet, dns_names_for_service

logger = logging.getLogger(__name__)

# Slot names of the installed resource sets
SHOOT_SLOT = "extension-audit-shoot"
SEED_SLOT = "extension-audit-seed"

# Credential names
CA_NAME = "ca-audittailer"
SERVER_CREDENTIAL_NAME = "audittailer-server"
CLIENT_CREDENTIAL_NAME = "audittailer-client"

DEFAULT_GENERIC_KUBECONFIG_SECRET_NAME = "generic-token-kubeconfig"

ProviderConfig = bytes | str | Mapping[str, Any] | None


class InstanceState(str, Enum):
    """Lifecycle state of one tenant's audit pipeline."""

    ABSENT = "Absent"
    RECONCILING = "Reconciling"
    INSTALLED = "Installed"
    DELETING = "Deleting"


@dataclass(frozen=True)
class ClusterContext:
    """The tenant cluster an operation applies to."""

    namespace: str
    generic_kubeconfig_secret_name: str = DEFAULT_GENERIC_KUBECONFIG_SECRET_NAME

    def __post_init__(self) -> None:
        if not self.namespace:
            raise ValueError("cluster namespace must not be empty")


@dataclass
class RenderedSets:
    """Object sets built for one reconciliation."""

    config: AuditConfig
    seed: ObjectSet
    shoot: ObjectSet
    credentials: dict[str, Credential] = field(default_factory=dict)


def credential_specs() -> list[CredentialSpec]:
    """The audittailer certificate chain: one CA signing a server and a client."""
    dns_names = dns_names_for_service(AUDITTAILER_NAME, AUDITTAILER_NAMESPACE)
    ca = CredentialSpec(name=CA_NAME, cert_type=CertType.CA, common_name=CA_NAME)
    return [
        ca,
        CredentialSpec(
            name=SERVER_CREDENTIAL_NAME,
            cert_type=CertType.SERVER,
            common_name=AUDITTAILER_NAME,
            dns_names=dns_names,
            signed_by=ca,
        ),
        CredentialSpec(
            name=CLIENT_CREDENTIAL_NAME,
            cert_type=CertType.CLIENT,
            common_name=AUDITTAILER_NAME,
            dns_names=dns_names,
            signed_by=ca,
        ),
    ]


async def render_object_sets(
    provider_config: ProviderConfig,
    cluster: ClusterContext,
    *,
    config: ControllerConfig,
    secrets_manager: SecretsManager,
    image_vector: ImageVector,
) -> RenderedSets:
    """Decode, default and compose everything a reconciliation installs.

    Credentials are resolved through the secrets manager, so missing ones
    are generated and persisted.

    Raises:
        InputError: If the configuration or its storage size is invalid.
        DependencyError: If an image or a credential cannot be resolved.
    """
    audit_config = apply_defaults(
        decode_provider_config(provider_config),
        default_size=config.default_persistence_size,
        default_policy=config.default_audit_policy,
    )
    # Checked before any credential is generated
    parse_storage_size(audit_config.persistence.size if audit_config.persistence else None)

    fluent_bit_image = image_vector.find_image("fluent-bit")
    audittailer_image = image_vector.find_image("audittailer")
    forwarder_image = image_vector.find_image("audit-forwarder")

    credentials = await secrets_manager.generate_all(credential_specs())
    server = credentials[SERVER_CREDENTIAL_NAME]
    client = credentials[CLIENT_CREDENTIAL_NAME]

    backends = audit_config.backends or AuditBackends()
    composition = compose_backends(
        backends,
        ForwardingContext(
            namespace=cluster.namespace,
            generic_kubeconfig_secret_name=cluster.generic_kubeconfig_secret_name,
            client_credential=client,
            forwarder_image=forwarder_image,
        ),
    )

    logger.info(
        "Composed audit backends",
        extra={
            "namespace": cluster.namespace,
            "log": backends.log_enabled,
            "cluster_forwarding": backends.cluster_forwarding_enabled,
            "backend_files": sorted(composition.config_files),
        },
    )

    return RenderedSets(
        config=audit_config,
        seed=seed_objects(
            audit_config,
            namespace=cluster.namespace,
            fluent_bit_image=fluent_bit_image,
            composition=composition,
        ),
        shoot=shoot_objects(
            audittailer_image=audittailer_image,
            server_credential=server,
            client_credential=client,
        ),
        credentials=credentials,
    )


class Actuator:
    """Reconciles, deletes, restores and migrates audit pipelines."""

    def __init__(
        self,
        config: ControllerConfig,
        secrets_manager: SecretsManager,
        installer: ResourceInstaller,
        image_vector: ImageVector | None = None,
    ) -> None:
        self.config = config
        self._secrets = secrets_manager
        self._installer = installer
        self._images = image_vector or ImageVector()
        self._states: dict[str, InstanceState] = {}

    def state(self, cluster: ClusterContext) -> InstanceState:
        return self._states.get(cluster.namespace, InstanceState.ABSENT)

    # =========================================================================
    # Operations
    # =========================================================================

    async def reconcile(
        self, provider_config: ProviderConfig, cluster: ClusterContext
    ) -> RenderedSets:
        """Bring the installed resource sets in line with ``provider_config``.

        Args:
            provider_config: Raw provider configuration; None means empty.
            cluster: Tenant cluster to reconcile.

        Returns:
            The object sets that were installed.

        Raises:
            InputError: If the configuration or its storage size is invalid.
            DependencyError: If credentials, images or installation fail.
        """
        previous = self._enter(cluster, InstanceState.RECONCILING)
        start_time = time.monotonic()

        try:
            rendered = await self.render(provider_config, cluster)

            await asyncio.gather(
                run_installer_call(self._installer.install_set, SHOOT_SLOT, rendered.shoot),
                run_installer_call(self._installer.install_set, SEED_SLOT, rendered.seed),
            )
        except BaseException:
            self._leave(cluster, previous)
            raise

        self._leave(cluster, InstanceState.INSTALLED)
        logger.info(
            "Reconciled audit extension",
            extra={
                "namespace": cluster.namespace,
                "seed_objects": len(rendered.seed),
                "shoot_objects": len(rendered.shoot),
                "duration_seconds": round(time.monotonic() - start_time, 3),
            },
        )
        return rendered

    async def delete(self, cluster: ClusterContext) -> None:
        """Remove both resource sets and wait until they are gone.

        Raises:
            InstallerError: If removal cannot be requested or checked.
            DeletionTimeoutError: If a set is still present at the deadline.
        """
        previous = self._enter(cluster, InstanceState.DELETING)
        logger.info("Deleting audit extension", extra={"namespace": cluster.namespace})

        try:
            for slot in (SHOOT_SLOT, SEED_SLOT):
                await run_installer_call(self._installer.remove_set, slot)

            await wait_until_removed(
                self._installer,
                [SHOOT_SLOT, SEED_SLOT],
                timeout_seconds=self.config.delete_timeout_seconds,
                poll_interval_seconds=self.config.delete_poll_interval_seconds,
            )
        except BaseException:
            self._leave(cluster, previous)
            raise

        self._leave(cluster, InstanceState.ABSENT)
        logger.info("Deleted audit extension", extra={"namespace": cluster.namespace})

    async def restore(
        self, provider_config: ProviderConfig, cluster: ClusterContext
    ) -> RenderedSets:
        """Restore after a control plane move; same as reconcile."""
        return await self.reconcile(provider_config, cluster)

    async def migrate(self, provider_config: ProviderConfig, cluster: ClusterContext) -> None:
        """Nothing to hand over; installed sets stay where they are."""
        logger.debug(
            "Migrate is a no-op",
            extra={"namespace": cluster.namespace, "state": self.state(cluster).value},
        )

    async def render(
        self, provider_config: ProviderConfig, cluster: ClusterContext
    ) -> RenderedSets:
        """Build both object sets without installing them."""
        return await render_object_sets(
            provider_config,
            cluster,
            config=self.config,
            secrets_manager=self._secrets,
            image_vector=self._images,
        )

    # =========================================================================
    # State machine
    # =========================================================================

    def _enter(self, cluster: ClusterContext, state: InstanceState) -> InstanceState:
        """Move to a transient state, returning the stable state left behind."""
        previous = self.state(cluster)
        self._states[cluster.namespace] = state
        logger.debug(
            "State transition",
            extra={"namespace": cluster.namespace, "from": previous.value, "to": state.value},
        )
        return previous

    def _leave(self, cluster: ClusterContext, state: InstanceState) -> None:
        # ABSENT is the default, so absent instances hold no entry
        if state == InstanceState.ABSENT:
            self._states.pop(cluster.namespace, None)
        else:
            self._states[cluster.namespace] = state
        logger.debug(
            "State transition",
            extra={"namespace": cluster.namespace, "to": state.value},
        )
