"""In-memory Kubernetes fakes for testing.

Provides fakes for the collaborators of the audit extension so that the
lifecycle operations can be exercised without a cluster.

Key Features:
- Resource installer with per-slot state and delayed or stuck removal
- Credential store and certificate generator with call tracking
- Failure injection for every collaborator
- CoreV1Api / CustomObjectsApi fakes for the kubernetes-backed adapters

Usage:
    from k8s_mock import FakeInstaller, FakeCredentialStore, FakeCertificateGenerator

    installer = FakeInstaller()
    actuator = Actuator(config, SecretsManager(FakeCredentialStore(),
                                               FakeCertificateGenerator()), installer)
    await actuator.reconcile(None, ClusterContext(namespace="shoot--p--c"))

    assert installer.installed_slots() == ["extension-audit-seed", "extension-audit-shoot"]
"""

from .api import FakeCoreV1Api, FakeCustomObjectsApi
from .credentials import FakeCertificateGenerator, FakeCredentialStore
from .installer import FakeInstaller

__all__ = [
    "FakeCertificateGenerator",
    "FakeCoreV1Api",
    "FakeCredentialStore",
    "FakeCustomObjectsApi",
    "FakeInstaller",
]
