"""Controller configuration with validation.

Configuration is validated at construction time so a misconfigured
controller fails at startup rather than in the middle of a reconciliation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from .policy import DEFAULT_AUDIT_POLICY


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_DELETE_TIMEOUT_SECONDS = 120
MIN_DELETE_TIMEOUT_SECONDS = 1
MAX_DELETE_TIMEOUT_SECONDS = 3600

DEFAULT_DELETE_POLL_INTERVAL_SECONDS = 5.0

DEFAULT_PERSISTENCE_SIZE = "1Gi"

MAX_AUDIT_POLICY_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max policy document


@dataclass(frozen=True)
class ControllerConfig:
    """Controller configuration, usually loaded from environment variables.

    The default audit policy is carried here instead of being read from the
    module constant at reconcile time, so tests and deployments can swap it.
    """

    # Deletion wait
    delete_timeout_seconds: float = DEFAULT_DELETE_TIMEOUT_SECONDS
    delete_poll_interval_seconds: float = DEFAULT_DELETE_POLL_INTERVAL_SECONDS

    # Defaults applied to the provider configuration
    default_persistence_size: str = DEFAULT_PERSISTENCE_SIZE
    default_audit_policy: str = field(default=DEFAULT_AUDIT_POLICY, repr=False)

    # Optional image vector overriding the built-in image references
    image_vector_path: Path | None = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not (
            MIN_DELETE_TIMEOUT_SECONDS
            <= self.delete_timeout_seconds
            <= MAX_DELETE_TIMEOUT_SECONDS
        ):
            errors.append(
                f"DELETE_TIMEOUT must be between {MIN_DELETE_TIMEOUT_SECONDS} "
                f"and {MAX_DELETE_TIMEOUT_SECONDS} seconds"
            )

        if self.delete_poll_interval_seconds <= 0:
            errors.append("DELETE_POLL_INTERVAL must be positive")
        elif self.delete_poll_interval_seconds > self.delete_timeout_seconds:
            errors.append("DELETE_POLL_INTERVAL cannot exceed DELETE_TIMEOUT")

        if not self.default_persistence_size.strip():
            errors.append("DEFAULT_PERSISTENCE_SIZE must not be empty")

        if not self.default_audit_policy.strip():
            errors.append("default audit policy must not be empty")

        if self.image_vector_path is not None and not self.image_vector_path.exists():
            errors.append(f"Image vector file does not exist: {self.image_vector_path}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> ControllerConfig:
        """Load configuration from environment variables.

        Environment Variables:
            DELETE_TIMEOUT: Seconds to wait for resource sets to disappear (default: 120)
            DELETE_POLL_INTERVAL: Seconds between removal checks (default: 5)
            DEFAULT_PERSISTENCE_SIZE: Volume size when none is configured (default: 1Gi)
            AUDIT_POLICY_FILE: File replacing the built-in default audit policy
            IMAGE_VECTOR_FILE: YAML image vector overriding built-in images
        """

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_path(key: str) -> Path | None:
            value = os.environ.get(key)
            return Path(value) if value else None

        policy_path = get_path("AUDIT_POLICY_FILE")
        default_policy = DEFAULT_AUDIT_POLICY
        if policy_path is not None:
            default_policy = _read_policy_file(policy_path)

        return cls(
            delete_timeout_seconds=get_float("DELETE_TIMEOUT", DEFAULT_DELETE_TIMEOUT_SECONDS),
            delete_poll_interval_seconds=get_float(
                "DELETE_POLL_INTERVAL", DEFAULT_DELETE_POLL_INTERVAL_SECONDS
            ),
            default_persistence_size=os.environ.get(
                "DEFAULT_PERSISTENCE_SIZE", DEFAULT_PERSISTENCE_SIZE
            ),
            default_audit_policy=default_policy,
            image_vector_path=get_path("IMAGE_VECTOR_FILE"),
        )


def _read_policy_file(path: Path) -> str:
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ConfigurationError(f"Failed to stat audit policy file {path}: {e}") from e

    if file_size > MAX_AUDIT_POLICY_FILE_SIZE_BYTES:
        raise ConfigurationError(
            f"Audit policy file exceeds maximum size of "
            f"{MAX_AUDIT_POLICY_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Failed to read audit policy file {path}: {e}") from e
