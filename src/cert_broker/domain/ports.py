"""
Ports — Protocol-based interfaces for infrastructure adapters.

These define WHAT the core needs without specifying HOW it's done.
Following hexagonal architecture:

  Domain ← Ports (protocols) ← Adapters (implementations)

Every port returns a Result so that adapter failures stay on the railway.
Adapters satisfy a port structurally, without inheritance.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from railway.result import Result

from cert_broker.domain.models import Enrollment, GeneratedCsr, KeyType, Role, StorageEntry


@runtime_checkable
class KeyValueStorage(Protocol):
    """
    Port: ordered key-value store shared with other processes.

    Values are opaque bytes. The core only reads and writes single keys;
    it never needs a multi-key transaction.
    """

    def get(self, key: str) -> Result[StorageEntry]:
        """Read a key. A missing key is a Success with an empty entry, not a failure."""
        ...

    def put(self, key: str, value: bytes) -> Result[str]:
        """Write (last write wins). Returns the key written."""
        ...

    def put_if_absent(self, key: str, value: bytes) -> Result[bool]:
        """
        Write only when the key doesn't exist yet.

        Returns Success(True) when this call created the key and
        Success(False) when a value was already present.
        """
        ...

    def list(self, prefix: str) -> Result[list[str]]:
        """Keys under `prefix`, with the prefix stripped, in sorted order."""
        ...


@runtime_checkable
class RoleStore(Protocol):
    """Port: named role policies. NOT_FOUND when the role doesn't exist."""

    def get_role(self, name: str) -> Result[Role]: ...

    def put_role(self, role: Role) -> Result[Role]: ...

    def list_roles(self) -> Result[list[str]]: ...


@runtime_checkable
class CsrGenerator(Protocol):
    """Port: create a private key and a CSR for an identity."""

    def generate(
        self,
        common_name: str,
        ip_sans: tuple[str, ...],
        dns_sans: tuple[str, ...],
        key_type: KeyType,
    ) -> Result[GeneratedCsr]: ...


@runtime_checkable
class EnrollmentClient(Protocol):
    """
    Port: submit a CSR to the certificate authority.

    Not retried: a resubmitted CSR may produce a second certificate.
    """

    def submit(
        self,
        csr_pem: str,
        ca: str,
        template: str,
        metadata_json: str,
    ) -> Result[Enrollment]: ...


@runtime_checkable
class RevocationClient(Protocol):
    """Port: revoke a certificate at the certificate authority by its external id."""

    def revoke(self, external_certificate_id: int, reason: int, comment: str) -> Result[int]:
        """Returns the HTTP status of the accepted request."""
        ...
