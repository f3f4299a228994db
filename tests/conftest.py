"""
Shared test fixtures for the cert-broker test suite.

Provides in-memory storage, role fixtures, mocked certificate authority
clients and a factory for real self-signed PEM certificates (the lease
sweep parses expiry dates, so those can't be fake strings).
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from railway.result import Result

from cert_broker.adapters.storage import InMemoryKeyValueStorage, StorageRoleStore
from cert_broker.domain.models import (
    CERTS_PREFIX,
    EXTERNAL_ID_PREFIX,
    Enrollment,
    KeyType,
    Role,
)

FIXED_NOW = datetime(2024, 5, 1, 12, 30, 45, tzinfo=UTC)

CA_CHAIN_PEM = "-----BEGIN CERTIFICATE-----\nISSUER\n-----END CERTIFICATE-----"


@pytest.fixture(scope="session")
def signing_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture()
def make_certificate(
    signing_key: ec.EllipticCurvePrivateKey,
) -> Callable[..., str]:
    """Return a factory for self-signed PEM certificates with a chosen expiry."""

    def _make(
        common_name: str = "www.example.com",
        not_after: datetime = FIXED_NOW + timedelta(days=30),
        serial: int = 0x6D0000012A,
    ) -> str:
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(signing_key.public_key())
            .serial_number(serial)
            .not_valid_before(not_after - timedelta(days=365))
            .not_valid_after(not_after)
            .sign(signing_key, hashes.SHA256())
        )
        return certificate.public_bytes(serialization.Encoding.PEM).decode()

    return _make


@pytest.fixture()
def storage() -> InMemoryKeyValueStorage:
    return InMemoryKeyValueStorage()


@pytest.fixture()
def role_store(storage: InMemoryKeyValueStorage) -> StorageRoleStore:
    return StorageRoleStore(storage)


@pytest.fixture()
def web_role() -> Role:
    """RSA role for example.com and its subdomains."""
    return Role(
        name="web",
        allowed_domains=("example.com",),
        allow_subdomains=True,
        key_type=KeyType.RSA,
    )


@pytest.fixture()
def stored_certificate(
    storage: InMemoryKeyValueStorage,
    make_certificate: Callable[..., str],
) -> Callable[..., str]:
    """Write certs/<serial> and kfId/<serial> as a completed issuance would."""

    def _store(serial: str = "6d:00:00:01:2a", external_id: int = 1234, **cert_kwargs) -> str:
        pem = make_certificate(**cert_kwargs)
        storage.put(CERTS_PREFIX + serial, pem.encode())
        storage.put(EXTERNAL_ID_PREFIX + serial, str(external_id).encode())
        return pem

    return _store


@pytest.fixture()
def enrollment_client() -> MagicMock:
    """EnrollmentClient mock answering with a fixed certificate and chain."""
    client = MagicMock()
    client.submit.return_value = Result.success(
        Enrollment(
            certificate_pem="-----BEGIN CERTIFICATE-----\nLEAF\n-----END CERTIFICATE-----",
            issuing_ca_pem=CA_CHAIN_PEM,
            serial="6D0000012A",
            external_certificate_id=1234,
        )
    )
    return client


@pytest.fixture()
def revocation_client() -> MagicMock:
    """RevocationClient mock accepting every revocation with HTTP 204."""
    client = MagicMock()
    client.revoke.return_value = Result.success(204)
    return client
