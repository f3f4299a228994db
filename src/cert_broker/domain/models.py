"""
Domain models — immutable data structures for roles, requests and records.

These are pure value objects. Storage encoding lives next to each record
(to_json/from_json) because the key-value store only understands bytes and
the stored layout is part of the external contract:

  roles/<name>      Role as JSON
  certs/<serial>    certificate PEM bytes
  kfId/<serial>     external CA certificate id as a JSON integer
  revoked/<serial>  RevocationRecord as JSON
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

CERTS_PREFIX = "certs/"
REVOKED_PREFIX = "revoked/"
EXTERNAL_ID_PREFIX = "kfId/"
ROLES_PREFIX = "roles/"


@dataclass(frozen=True, slots=True)
class StorageEntry:
    """A key read from storage; `value` is None when the key doesn't exist."""

    key: str
    value: bytes | None = field(default=None, repr=False)

    @property
    def exists(self) -> bool:
        return self.value is not None


class KeyType(Enum):
    """Key algorithm a role permits. ANY is only valid for signing caller CSRs."""

    RSA = "rsa"
    ECDSA = "ecdsa"
    ANY = "any"


@dataclass(frozen=True, slots=True)
class Role:
    """Named issuance policy."""

    name: str
    allowed_domains: tuple[str, ...] = ()
    allow_subdomains: bool = False
    key_type: KeyType = KeyType.RSA
    no_store: bool = False

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "name": self.name,
                "allowed_domains": list(self.allowed_domains),
                "allow_subdomains": self.allow_subdomains,
                "key_type": self.key_type.value,
                "no_store": self.no_store,
            }
        ).encode()

    @staticmethod
    def from_json(raw: bytes) -> Role:
        data: dict[str, Any] = json.loads(raw)
        return Role(
            name=data["name"],
            allowed_domains=tuple(data.get("allowed_domains", ())),
            allow_subdomains=bool(data.get("allow_subdomains", False)),
            key_type=KeyType(data.get("key_type", KeyType.RSA.value)),
            no_store=bool(data.get("no_store", False)),
        )


@dataclass(frozen=True, slots=True)
class IssuanceDefaults:
    """
    CA and template used when a request names neither.

    Built from configuration and passed explicitly into each issuance; it is
    only replaced at the configuration reload boundary.
    """

    ca: str = ""
    template: str = ""


@dataclass(frozen=True, slots=True)
class IssueRequest:
    """Key-generating issuance request; the key pair is created server-side."""

    role: str
    common_name: str
    dns_sans: tuple[str, ...]
    ip_sans: tuple[str, ...] = ()
    ca: str | None = None
    template: str | None = None
    metadata: str = ""


@dataclass(frozen=True, slots=True)
class SignRequest:
    """Issuance from a caller-supplied PEM CSR."""

    role: str
    csr_pem: str
    ca: str | None = None
    template: str | None = None
    metadata: str = ""


@dataclass(frozen=True, slots=True)
class ValidatedIdentity:
    """A Common Name and DNS SANs accepted by a role's domain policy."""

    common_name: str
    dns_sans: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class GeneratedCsr:
    csr_pem: str
    private_key_pem: str = field(repr=False)
    private_key_type: str


@dataclass(frozen=True, slots=True)
class Enrollment:
    """What the certificate authority returns for an accepted CSR."""

    certificate_pem: str
    issuing_ca_pem: str
    serial: str
    external_certificate_id: int


@dataclass(frozen=True, slots=True)
class CertificateRecord:
    """An issued certificate as held by the record store."""

    serial: str
    certificate_pem: str
    issuing_ca_pem: str
    external_certificate_id: int


@dataclass(frozen=True, slots=True)
class IssuedCertificate:
    """Response of issue/sign. The private key is only present for issue."""

    certificate: str
    issuing_ca: str
    serial_number: str
    private_key: str | None = field(default=None, repr=False)
    private_key_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "certificate": self.certificate,
            "issuing_ca": self.issuing_ca,
            "serial_number": self.serial_number,
        }
        if self.private_key is not None:
            data["private_key"] = self.private_key
            data["private_key_type"] = self.private_key_type
            data["revocation_time"] = 0
        return data


@dataclass(frozen=True, slots=True)
class RevocationRecord:
    """
    Written once per serial on the first successful revocation.

    Its presence in storage is the authoritative "already revoked" signal.
    """

    serial: str
    certificate_bytes: bytes = field(repr=False)
    revocation_time: int
    revocation_time_utc: datetime

    @staticmethod
    def create(serial: str, certificate_bytes: bytes, now: datetime) -> RevocationRecord:
        now = now.astimezone(UTC).replace(microsecond=0)
        return RevocationRecord(
            serial=serial,
            certificate_bytes=certificate_bytes,
            revocation_time=int(now.timestamp()),
            revocation_time_utc=now,
        )

    @property
    def revocation_time_rfc3339(self) -> str:
        return self.revocation_time_utc.strftime("%Y-%m-%dT%H:%M:%SZ")

    def to_dict(self) -> dict[str, Any]:
        return {
            "revocation_time": self.revocation_time,
            "revocation_time_rfc3339": self.revocation_time_rfc3339,
        }

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "certificate_bytes": base64.b64encode(self.certificate_bytes).decode(),
                "revocation_time": self.revocation_time,
                "revocation_time_utc": self.revocation_time_rfc3339,
            }
        ).encode()

    @staticmethod
    def from_json(serial: str, raw: bytes) -> RevocationRecord:
        data: dict[str, Any] = json.loads(raw)
        revoked_at = datetime.fromisoformat(data["revocation_time_utc"].replace("Z", "+00:00"))
        return RevocationRecord(
            serial=serial,
            certificate_bytes=base64.b64decode(data["certificate_bytes"]),
            revocation_time=int(data["revocation_time"]),
            revocation_time_utc=revoked_at.astimezone(UTC),
        )


@dataclass(frozen=True, slots=True)
class Revoked:
    """Revocation outcome: a record exists (new or pre-existing)."""

    record: RevocationRecord


@dataclass(frozen=True, slots=True)
class NoOp:
    """Revocation outcome: nothing was written and nothing needs reporting."""

    reason: str


RevocationOutcome = Revoked | NoOp


@dataclass(frozen=True, slots=True)
class Found:
    serial: str
    certificate: str
    revocation_time: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"certificate": self.certificate, "revocation_time": self.revocation_time}


@dataclass(frozen=True, slots=True)
class NotFound:
    serial: str


FetchOutcome = Found | NotFound
