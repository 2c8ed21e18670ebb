"""Error taxonomy for the audit extension.

Every failure raised out of a lifecycle operation belongs to one of three
families so the invoking controller can decide how to back off:

- InputError: the provider configuration itself is wrong. Retrying without
  a corrected configuration cannot succeed.
- DependencyError: a collaborator (credential store, certificate generator,
  image vector, resource installer) failed. Retrying later may succeed.
- DeletionTimeoutError: cleanup was requested but did not finish within the
  deadline. Cleanup may still be in progress.

Nothing in this package retries internally.
"""

from __future__ import annotations


class AuditExtensionError(Exception):
    """Base class for all audit extension errors."""

    pass


# =============================================================================
# Input errors
# =============================================================================


class InputError(AuditExtensionError):
    """Raised when the desired configuration cannot be used as given."""

    pass


class ProviderConfigError(InputError):
    """Raised when the provider configuration payload cannot be decoded."""

    pass


class QuantityError(InputError):
    """Raised when a storage quantity cannot be parsed."""

    pass


# =============================================================================
# Dependency errors
# =============================================================================


class DependencyError(AuditExtensionError):
    """Raised when an external collaborator fails."""

    pass


class CredentialError(DependencyError):
    """Raised when credentials cannot be resolved, generated or signed."""

    pass


class CredentialStoreError(CredentialError):
    """Raised when the persistent credential store is unavailable."""

    pass


class ImageNotFoundError(DependencyError):
    """Raised when an image reference cannot be looked up."""

    pass


class InstallerError(DependencyError):
    """Raised when a resource set cannot be installed or removed."""

    pass


# =============================================================================
# Timeouts
# =============================================================================


class DeletionTimeoutError(AuditExtensionError):
    """Raised when installed resource sets are not gone before the deadline.

    Not a DependencyError. The slots that were still present when the
    deadline expired are listed in ``pending``.
    """

    def __init__(self, message: str, pending: list[str] | None = None) -> None:
        super().__init__(message)
        self.pending = pending or []
