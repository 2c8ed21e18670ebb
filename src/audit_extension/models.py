"""Pydantic models for the audit provider configuration.

Decoding and defaulting are separate steps:
1. ``AuditConfig.model_validate`` parses the payload into optional fields
2. ``apply_defaults`` returns a fully populated copy

Field names follow the camelCase wire format through aliases.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from kubernetes.utils import parse_quantity
from pydantic import BaseModel, Field

from .errors import QuantityError

# =============================================================================
# Persistence
# =============================================================================


class AuditPersistence(BaseModel):
    """Volume settings for the audit log receiver."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    size: str | None = None
    storage_class_name: str | None = Field(None, alias="storageClassName")


# =============================================================================
# Backends
# =============================================================================


class AuditBackendLog(BaseModel):
    """Local standard-output sink."""

    model_config = {"extra": "forbid"}

    enabled: bool = False


class AuditBackendClusterForwarding(BaseModel):
    """Forwarding of audit events into the tenant cluster."""

    model_config = {"extra": "forbid"}

    enabled: bool = False


class AuditBackends(BaseModel):
    """Set of independently enabled audit backends."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    log: AuditBackendLog | None = None
    cluster_forwarding: AuditBackendClusterForwarding | None = Field(
        None, alias="clusterForwarding"
    )

    @property
    def log_enabled(self) -> bool:
        return self.log is not None and self.log.enabled

    @property
    def cluster_forwarding_enabled(self) -> bool:
        return self.cluster_forwarding is not None and self.cluster_forwarding.enabled


# =============================================================================
# Audit configuration
# =============================================================================


class AuditConfig(BaseModel):
    """Desired state of the audit pipeline for one tenant cluster."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    persistence: AuditPersistence | None = None
    audit_policy: str | None = Field(None, alias="auditPolicy")
    backends: AuditBackends | None = None

    def to_wire(self) -> dict[str, Any]:
        """Dump in the camelCase wire format, omitting unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


def _is_unset(value: str | None) -> bool:
    return value is None or not value.strip()


def apply_defaults(
    config: AuditConfig,
    *,
    default_size: str,
    default_policy: str,
) -> AuditConfig:
    """Return a copy of ``config`` with every optional field filled in.

    - ``persistence.size`` falls back to ``default_size``
    - ``auditPolicy`` falls back to ``default_policy``
    - ``backends`` falls back to the log backend when no backend was given

    A ``backends`` mapping that is present but enables nothing is kept as is.

    Args:
        config: Decoded configuration, possibly sparse.
        default_size: Storage quantity used when none is configured.
        default_policy: Audit policy document used when none is configured.

    Returns:
        A new, fully populated configuration. The input is not modified.
    """
    defaulted = config.model_copy(deep=True)

    if defaulted.persistence is None:
        defaulted.persistence = AuditPersistence()

    if _is_unset(defaulted.persistence.size):
        defaulted.persistence.size = default_size

    if _is_unset(defaulted.audit_policy):
        defaulted.audit_policy = default_policy

    if defaulted.backends is None:
        defaulted.backends = AuditBackends(log=AuditBackendLog(enabled=True))

    return defaulted


def parse_storage_size(size: str | None) -> Decimal:
    """Parse a Kubernetes storage quantity such as ``1Gi`` or ``500M``.

    Args:
        size: Quantity string.

    Returns:
        The quantity in bytes.

    Raises:
        QuantityError: If the value is missing or malformed.
    """
    if _is_unset(size):
        raise QuantityError("persistence size is empty")

    try:
        quantity = parse_quantity(size.strip())
    except (ValueError, ArithmeticError) as e:
        raise QuantityError(
            f"unable to parse persistence size as kubernetes quantity: {size!r}"
        ) from e

    return quantity
