"""Tests for certificate chain management."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID
from k8s_mock import FakeCertificateGenerator, FakeCredentialStore

from audit_extension.credentials import (
    CertType,
    Credential,
    CredentialGraph,
    CredentialSpec,
    InMemoryCredentialStore,
    SecretsManager,
    X509CertificateGenerator,
)
from audit_extension.errors import CredentialError, CredentialStoreError, DependencyError

DNS_NAMES = ("audittailer", "audittailer.audit")


def chain() -> list[CredentialSpec]:
    ca = CredentialSpec(name="ca", cert_type=CertType.CA, common_name="ca")
    return [
        ca,
        CredentialSpec(
            name="server",
            cert_type=CertType.SERVER,
            common_name="audittailer",
            dns_names=DNS_NAMES,
            signed_by=ca,
        ),
        CredentialSpec(
            name="client",
            cert_type=CertType.CLIENT,
            common_name="audittailer",
            dns_names=DNS_NAMES,
            signed_by=ca,
        ),
    ]


class TestCredentialSpec:
    """Tests for CredentialSpec validation."""

    def test_ca_cannot_be_signed(self) -> None:
        """Test that a CA with an authority is rejected."""
        ca = CredentialSpec(name="ca", cert_type=CertType.CA, common_name="ca")
        with pytest.raises(CredentialError):
            CredentialSpec(name="sub", cert_type=CertType.CA, common_name="sub", signed_by=ca)

    def test_certificate_requires_authority(self) -> None:
        """Test that an unsigned leaf certificate is rejected."""
        with pytest.raises(CredentialError) as exc_info:
            CredentialSpec(name="server", cert_type=CertType.SERVER, common_name="s")

        assert "requires a signing authority" in str(exc_info.value)

    def test_authority_must_be_ca(self) -> None:
        """Test that a leaf cannot sign another leaf."""
        ca, server, _ = chain()
        with pytest.raises(CredentialError) as exc_info:
            CredentialSpec(
                name="nested", cert_type=CertType.CLIENT, common_name="n", signed_by=server
            )

        assert "not a certificate authority" in str(exc_info.value)

    def test_checksum_tracks_shape(self) -> None:
        """Test the checksum changes with DNS names but not with their order."""
        ca = CredentialSpec(name="ca", cert_type=CertType.CA, common_name="ca")

        def server(*names: str) -> CredentialSpec:
            return CredentialSpec(
                name="s", cert_type=CertType.SERVER, common_name="s", dns_names=names, signed_by=ca
            )

        assert server("a", "b").checksum == server("b", "a").checksum
        assert server("a").checksum != server("a", "b").checksum


class TestCredentialGraph:
    """Tests for CredentialGraph construction and ordering."""

    def test_levels(self) -> None:
        """Test the CA forms the first level, its certificates the second."""
        levels = CredentialGraph.from_specs(chain()).levels()

        assert [[spec.name for spec in level] for level in levels] == [
            ["ca"],
            ["server", "client"],
        ]

    def test_duplicate_names_rejected(self) -> None:
        """Test the same name twice is rejected."""
        specs = chain()
        with pytest.raises(CredentialError) as exc_info:
            CredentialGraph.from_specs([*specs, specs[0]])

        assert "duplicate" in str(exc_info.value)

    def test_missing_authority_rejected(self) -> None:
        """Test a certificate whose CA is not in the request is rejected."""
        _, server, _ = chain()
        with pytest.raises(CredentialError) as exc_info:
            CredentialGraph.from_specs([server])

        assert "not part of this request" in str(exc_info.value)

    def test_lookalike_authority_rejected(self) -> None:
        """Test a CA with the same name but a different object is foreign."""
        _, server, _ = chain()
        other_ca = CredentialSpec(name="ca", cert_type=CertType.CA, common_name="other")

        with pytest.raises(CredentialError):
            CredentialGraph.from_specs([other_ca, server])


class TestSecretsManager:
    """Tests for SecretsManager resolution."""

    @pytest.mark.asyncio
    async def test_generates_missing_chain(self) -> None:
        """Test a fresh store gets a CA and two certificates signed by it."""
        store = FakeCredentialStore()
        generator = FakeCertificateGenerator()
        manager = SecretsManager(store, generator)

        credentials = await manager.generate_all(chain())

        assert list(credentials) == ["ca", "server", "client"]
        assert generator.generated[0] == "ca"
        assert sorted(generator.generated[1:]) == ["client", "server"]
        ca = credentials["ca"]
        for name in ("server", "client"):
            assert credentials[name].issuer_fingerprint == ca.fingerprint
            assert credentials[name].ca_certificate == ca.certificate
        assert sorted(store.credentials) == ["ca", "client", "server"]

    @pytest.mark.asyncio
    async def test_reuses_valid_credentials(self) -> None:
        """Test a second resolution generates nothing."""
        store = FakeCredentialStore()
        generator = FakeCertificateGenerator()
        manager = SecretsManager(store, generator)

        first = await manager.generate_all(chain())
        second = await manager.generate_all(chain())

        assert first == second
        assert len(generator.generated) == 3

    @pytest.mark.asyncio
    async def test_expiring_certificate_renewed(self) -> None:
        """Test a certificate inside the renewal window is re-issued."""
        now = datetime(2030, 1, 1, tzinfo=UTC)
        store = FakeCredentialStore()
        generator = FakeCertificateGenerator(validity=timedelta(days=10), clock=lambda: now)
        manager = SecretsManager(store, generator, renew_before=timedelta(days=30), clock=lambda: now)

        await manager.generate_all(chain())
        await manager.generate_all(chain())

        assert len(generator.generated) == 6

    @pytest.mark.asyncio
    async def test_ca_rotation_reissues_signed_certificates(self) -> None:
        """Test certificates signed by an old CA are re-signed by the new one."""
        store = FakeCredentialStore()
        generator = FakeCertificateGenerator()
        manager = SecretsManager(store, generator)
        first = await manager.generate_all(chain())

        # Replace the CA out of band
        rotated = generator.generate(chain()[0], None)
        store.credentials["ca"] = rotated

        second = await manager.generate_all(chain())

        assert second["ca"] == rotated
        assert second["server"] != first["server"]
        assert second["server"].issuer_fingerprint == rotated.fingerprint
        assert second["client"].issuer_fingerprint == rotated.fingerprint

    @pytest.mark.asyncio
    async def test_spec_change_regenerates(self) -> None:
        """Test a changed DNS name list re-issues only that certificate."""
        store = FakeCredentialStore()
        generator = FakeCertificateGenerator()
        manager = SecretsManager(store, generator)
        await manager.generate_all(chain())

        ca, server, client = chain()
        widened = CredentialSpec(
            name="server",
            cert_type=CertType.SERVER,
            common_name="audittailer",
            dns_names=(*DNS_NAMES, "audittailer.audit.svc"),
            signed_by=ca,
        )
        await manager.generate_all([ca, widened, client])

        assert generator.generated[3:] == ["server"]

    @pytest.mark.asyncio
    async def test_store_unavailable(self) -> None:
        """Test a store outage surfaces as CredentialStoreError."""
        manager = SecretsManager(FakeCredentialStore(fail_load=True), FakeCertificateGenerator())

        with pytest.raises(CredentialStoreError) as exc_info:
            await manager.generate_all(chain())

        assert "credential store unavailable" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_save_failure(self) -> None:
        """Test a failed write surfaces as CredentialStoreError."""
        manager = SecretsManager(FakeCredentialStore(fail_save=True), FakeCertificateGenerator())

        with pytest.raises(CredentialStoreError):
            await manager.generate_all(chain())

    @pytest.mark.asyncio
    async def test_generation_failure(self) -> None:
        """Test a generator failure surfaces as CredentialError."""
        store = FakeCredentialStore()
        manager = SecretsManager(store, FakeCertificateGenerator(fail_for={"client"}))

        with pytest.raises(CredentialError) as exc_info:
            await manager.generate_all(chain())

        assert not isinstance(exc_info.value, CredentialStoreError)
        assert "ca" in store.credentials

    @pytest.mark.asyncio
    async def test_missing_authority_fails_before_store_access(self) -> None:
        """Test graph errors are raised before anything is loaded."""
        store = FakeCredentialStore()
        manager = SecretsManager(store, FakeCertificateGenerator())

        with pytest.raises(CredentialError):
            await manager.generate_all(chain()[1:])

        assert store.loads == []

    @pytest.mark.asyncio
    async def test_errors_are_dependency_errors(self) -> None:
        """Test credential failures belong to the dependency error family."""
        manager = SecretsManager(FakeCredentialStore(fail_load=True), FakeCertificateGenerator())

        with pytest.raises(DependencyError):
            await manager.generate_all(chain())

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        """Test cancelling the caller cancels the resolution."""
        manager = SecretsManager(FakeCredentialStore(), FakeCertificateGenerator())
        task = asyncio.create_task(manager.generate_all(chain()))
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestCredential:
    """Tests for Credential helpers."""

    def test_secret_name_follows_certificate(self) -> None:
        """Test the secret name changes when the certificate does."""
        generator = FakeCertificateGenerator()
        ca = chain()[0]

        first = generator.generate(ca, None)
        second = generator.generate(ca, None)

        assert first.secret_name.startswith("ca-")
        assert first.secret_name != second.secret_name

    def test_data_keys(self) -> None:
        """Test CA and leaf credentials expose the keys workloads mount."""
        generator = FakeCertificateGenerator()
        ca_spec, server_spec, _ = chain()
        ca = generator.generate(ca_spec, None)
        server = generator.generate(server_spec, ca)

        assert set(ca.data()) == {"ca.crt", "ca.key"}
        assert server.data() == {
            "ca.crt": ca.certificate,
            "tls.crt": server.certificate,
            "tls.key": server.private_key,
        }

    def test_private_key_not_in_repr(self) -> None:
        """Test key material stays out of logs and tracebacks."""
        credential = Credential(
            name="x",
            cert_type=CertType.CA,
            certificate=b"cert",
            private_key=b"secret-key",
            not_after=datetime.now(UTC),
            spec_checksum="c",
        )
        assert "secret-key" not in repr(credential)


class TestX509CertificateGenerator:
    """Tests for real certificate generation."""

    @pytest.mark.asyncio
    async def test_chain_verifies(self) -> None:
        """Test the generated certificates carry the expected extensions."""
        manager = SecretsManager(InMemoryCredentialStore(), X509CertificateGenerator())

        credentials = await manager.generate_all(chain())

        ca = x509.load_pem_x509_certificate(credentials["ca"].certificate)
        server = x509.load_pem_x509_certificate(credentials["server"].certificate)
        client = x509.load_pem_x509_certificate(credentials["client"].certificate)

        assert ca.extensions.get_extension_for_class(x509.BasicConstraints).value.ca is True
        assert server.issuer == ca.subject
        assert client.issuer == ca.subject
        server.verify_directly_issued_by(ca)
        client.verify_directly_issued_by(ca)

        san = server.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == list(DNS_NAMES)

        server_usage = server.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        client_usage = client.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        assert ExtendedKeyUsageOID.SERVER_AUTH in server_usage
        assert ExtendedKeyUsageOID.CLIENT_AUTH in client_usage

    def test_leaf_requires_issuer(self) -> None:
        """Test a leaf cannot be generated without its CA."""
        _, server, _ = chain()
        with pytest.raises(CredentialError):
            X509CertificateGenerator().generate(server, None)
