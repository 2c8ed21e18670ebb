"""Certificate chain management for the audit transport.

This module resolves a set of credential specs into concrete
certificates:
1. Build a dependency graph (signed certificates point at their CA)
2. Resolve the graph level by level in topological order
3. Reuse persisted credentials while they are still valid
4. Generate, sign and persist everything else

DESIGN:
- Signing relationships are object references, not names. A spec signed by
  a CA that is not part of the same request is rejected when the graph is
  built, before anything is generated.
- Specs on the same level have no dependency on each other and are resolved
  concurrently. Each level is a barrier: a CA is always persisted before any
  certificate it signs is looked at.
- A signed certificate remembers the fingerprint of the CA that signed it.
  When the CA is rotated, every certificate it signs is re-issued by the new
  CA on the next resolution; unrelated certificates are left alone.

The actual key generation is delegated to a CertificateGenerator and the
persistence to a CredentialStore, both of which can be replaced.
"""

from __future__ import annotations

import asyncio
import functools
import hashlib
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Protocol

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .errors import AuditExtensionError, CredentialError, CredentialStoreError

logger = logging.getLogger(__name__)

# Validity periods
CA_VALIDITY = timedelta(days=3650)
CERTIFICATE_VALIDITY = timedelta(days=365)
DEFAULT_RENEW_BEFORE = timedelta(days=30)

DEFAULT_KEY_SIZE = 2048

# Backdate not_valid_before to tolerate clock skew between components
CLOCK_SKEW_ALLOWANCE = timedelta(minutes=5)


class CertType(str, Enum):
    """Kinds of credentials the manager can produce."""

    CA = "ca"
    SERVER = "server"
    CLIENT = "client"


@dataclass(frozen=True)
class CredentialSpec:
    """Declarative request for a CA or a certificate signed by one."""

    name: str
    cert_type: CertType
    common_name: str
    dns_names: tuple[str, ...] = ()
    signed_by: CredentialSpec | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise CredentialError("credential spec name must not be empty")

        if self.cert_type == CertType.CA:
            if self.signed_by is not None:
                raise CredentialError(f"CA '{self.name}' cannot be signed by another authority")
            return

        if self.signed_by is None:
            raise CredentialError(f"certificate '{self.name}' requires a signing authority")

        if self.signed_by.cert_type != CertType.CA:
            raise CredentialError(
                f"certificate '{self.name}' is signed by '{self.signed_by.name}', "
                f"which is not a certificate authority"
            )

    @property
    def checksum(self) -> str:
        """Stable hash of everything that shapes the issued certificate."""
        parts = [
            self.cert_type.value,
            self.common_name,
            ",".join(sorted(self.dns_names)),
            self.signed_by.name if self.signed_by else "",
        ]
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Credential:
    """Materialized key and certificate for one spec."""

    name: str
    cert_type: CertType
    certificate: bytes
    private_key: bytes = field(repr=False)
    not_after: datetime
    spec_checksum: str
    ca_certificate: bytes | None = None
    issuer_fingerprint: str | None = None

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(self.certificate).hexdigest()

    @property
    def secret_name(self) -> str:
        """Name of the Secret holding this credential.

        The suffix changes whenever the certificate is re-issued, so
        workloads mounting it are rolled on rotation.
        """
        return f"{self.name}-{self.fingerprint[:8]}"

    def data(self) -> dict[str, bytes]:
        """Secret data keys as consumed by the workloads."""
        if self.cert_type == CertType.CA:
            return {"ca.crt": self.certificate, "ca.key": self.private_key}
        return {
            "ca.crt": self.ca_certificate or b"",
            "tls.crt": self.certificate,
            "tls.key": self.private_key,
        }

    def expires_within(self, window: timedelta, now: datetime) -> bool:
        return self.not_after - window <= now


# =============================================================================
# Collaborators
# =============================================================================


class CredentialStore(Protocol):
    """Persistent storage for materialized credentials."""

    def load(self, name: str) -> Credential | None: ...

    def save(self, credential: Credential) -> None: ...


class CertificateGenerator(Protocol):
    """Produces a credential for a spec, signed by ``issuer`` if given."""

    def generate(self, spec: CredentialSpec, issuer: Credential | None) -> Credential: ...


class InMemoryCredentialStore:
    """Credential store keeping everything in a dict.

    Used for offline rendering; credentials do not survive the process.
    """

    def __init__(self) -> None:
        self._credentials: dict[str, Credential] = {}

    def load(self, name: str) -> Credential | None:
        return self._credentials.get(name)

    def save(self, credential: Credential) -> None:
        self._credentials[credential.name] = credential


class X509CertificateGenerator:
    """RSA/SHA-256 X.509 certificate generator."""

    def __init__(
        self,
        key_size: int = DEFAULT_KEY_SIZE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._key_size = key_size
        self._clock = clock or (lambda: datetime.now(UTC))

    def generate(self, spec: CredentialSpec, issuer: Credential | None) -> Credential:
        now = self._clock()
        key = rsa.generate_private_key(public_exponent=65537, key_size=self._key_size)
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, spec.common_name)])

        validity = CA_VALIDITY if spec.cert_type == CertType.CA else CERTIFICATE_VALIDITY
        not_after = now + validity

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - CLOCK_SKEW_ALLOWANCE)
            .not_valid_after(not_after)
        )

        if spec.cert_type == CertType.CA:
            builder = (
                builder.issuer_name(subject)
                .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
                .add_extension(_key_usage(ca=True), critical=True)
            )
            certificate = builder.sign(key, hashes.SHA256())
            return Credential(
                name=spec.name,
                cert_type=spec.cert_type,
                certificate=certificate.public_bytes(serialization.Encoding.PEM),
                private_key=_private_key_pem(key),
                not_after=not_after,
                spec_checksum=spec.checksum,
            )

        if issuer is None:
            raise CredentialError(f"certificate '{spec.name}' requires an issuer")

        ca_certificate = x509.load_pem_x509_certificate(issuer.certificate)
        ca_key = serialization.load_pem_private_key(issuer.private_key, password=None)

        usage = (
            ExtendedKeyUsageOID.SERVER_AUTH
            if spec.cert_type == CertType.SERVER
            else ExtendedKeyUsageOID.CLIENT_AUTH
        )
        builder = (
            builder.issuer_name(ca_certificate.subject)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(_key_usage(ca=False), critical=True)
            .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
        )
        if spec.dns_names:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(name) for name in spec.dns_names]),
                critical=False,
            )

        certificate = builder.sign(ca_key, hashes.SHA256())
        return Credential(
            name=spec.name,
            cert_type=spec.cert_type,
            certificate=certificate.public_bytes(serialization.Encoding.PEM),
            private_key=_private_key_pem(key),
            not_after=not_after,
            spec_checksum=spec.checksum,
            ca_certificate=issuer.certificate,
            issuer_fingerprint=issuer.fingerprint,
        )


def _key_usage(ca: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=not ca,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=ca,
        crl_sign=ca,
        encipher_only=False,
        decipher_only=False,
    )


def _private_key_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


# =============================================================================
# Dependency graph
# =============================================================================


@dataclass
class CredentialGraph:
    """Directed acyclic graph of signing relationships."""

    specs: dict[str, CredentialSpec] = field(default_factory=dict)

    @classmethod
    def from_specs(cls, specs: Sequence[CredentialSpec]) -> CredentialGraph:
        """Build a graph, rejecting duplicates and foreign authorities.

        Raises:
            CredentialError: If a name repeats or an authority is not part of
                ``specs``.
        """
        graph = cls()
        for spec in specs:
            if spec.name in graph.specs:
                raise CredentialError(f"duplicate credential spec '{spec.name}'")
            graph.specs[spec.name] = spec

        for spec in specs:
            authority = spec.signed_by
            if authority is None:
                continue
            # Identity, not name equality: a look-alike CA is still foreign
            if graph.specs.get(authority.name) is not authority:
                raise CredentialError(
                    f"certificate '{spec.name}' is signed by '{authority.name}', "
                    f"which is not part of this request"
                )

        return graph

    def levels(self) -> list[list[CredentialSpec]]:
        """Group specs into levels; every spec depends only on earlier levels.

        Specs keep their declaration order within a level.
        """
        # Kahn's algorithm, collecting one frontier at a time
        dependents: dict[str, list[str]] = {name: [] for name in self.specs}
        in_degree: dict[str, int] = {name: 0 for name in self.specs}

        for spec in self.specs.values():
            if spec.signed_by is not None:
                dependents[spec.signed_by.name].append(spec.name)
                in_degree[spec.name] += 1

        result: list[list[CredentialSpec]] = []
        frontier = [name for name, degree in in_degree.items() if degree == 0]

        while frontier:
            result.append([self.specs[name] for name in frontier])
            next_frontier: list[str] = []
            for name in frontier:
                for dependent in dependents[name]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        next_frontier.append(dependent)
            frontier = sorted(next_frontier, key=list(self.specs).index)

        return result


# =============================================================================
# Manager
# =============================================================================


class SecretsManager:
    """Resolves credential specs against a store, generating what is missing."""

    def __init__(
        self,
        store: CredentialStore,
        generator: CertificateGenerator | None = None,
        renew_before: timedelta = DEFAULT_RENEW_BEFORE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._generator = generator or X509CertificateGenerator()
        self._renew_before = renew_before
        self._clock = clock or (lambda: datetime.now(UTC))

    async def generate_all(self, specs: Sequence[CredentialSpec]) -> dict[str, Credential]:
        """Resolve every spec, in signing order.

        Args:
            specs: Credential specs; authorities must be part of the list.

        Returns:
            Mapping from spec name to credential, in declaration order.

        Raises:
            CredentialError: If the specs are inconsistent or generation fails.
            CredentialStoreError: If the store cannot be read or written.
        """
        graph = CredentialGraph.from_specs(specs)
        resolved: dict[str, Credential] = {}

        for level in graph.levels():
            credentials = await asyncio.gather(
                *(self._resolve(spec, resolved) for spec in level)
            )
            for spec, credential in zip(level, credentials, strict=True):
                resolved[spec.name] = credential

        return {spec.name: resolved[spec.name] for spec in specs}

    async def _resolve(
        self, spec: CredentialSpec, resolved: dict[str, Credential]
    ) -> Credential:
        issuer = resolved[spec.signed_by.name] if spec.signed_by is not None else None

        existing = await self._call(self._store.load, spec.name, store=True)
        if existing is not None:
            reason = self._renewal_reason(existing, spec, issuer)
            if reason is None:
                logger.debug(
                    "Reusing credential",
                    extra={"credential": spec.name, "secret_name": existing.secret_name},
                )
                return existing
            logger.info(
                "Regenerating credential",
                extra={"credential": spec.name, "reason": reason},
            )

        credential = await self._call(self._generator.generate, spec, issuer, store=False)
        await self._call(self._store.save, credential, store=True)

        logger.info(
            "Generated credential",
            extra={
                "credential": spec.name,
                "cert_type": spec.cert_type.value,
                "secret_name": credential.secret_name,
                "signed_by": spec.signed_by.name if spec.signed_by else None,
            },
        )
        return credential

    def _renewal_reason(
        self, existing: Credential, spec: CredentialSpec, issuer: Credential | None
    ) -> str | None:
        """Return why ``existing`` cannot be reused, or None if it can."""
        if existing.cert_type != spec.cert_type:
            return "cert type changed"
        if existing.spec_checksum != spec.checksum:
            return "spec changed"
        if existing.expires_within(self._renew_before, self._clock()):
            return "expiring"
        if issuer is not None and existing.issuer_fingerprint != issuer.fingerprint:
            return "signing authority rotated"
        return None

    async def _call(self, func: Callable, *args: object, store: bool) -> object:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(func, *args))
        except AuditExtensionError:
            raise
        except Exception as e:
            if store:
                raise CredentialStoreError(f"credential store unavailable: {e}") from e
            raise CredentialError(f"credential generation failed: {e}") from e
