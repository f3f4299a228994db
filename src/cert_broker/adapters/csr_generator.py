"""
CSR generator adapter — private key and PKCS#10 request creation.

Adapter layer — implements the CsrGenerator port with cryptography (PyCA):

  rsa   → RSA 2048, private key as "RSA PRIVATE KEY" PEM
  ecdsa → EC P-256, private key as "EC PRIVATE KEY" PEM

The CSR carries the Common Name as subject and the DNS/IP SANs in a
SubjectAlternativeName extension. Also hosts the PEM parsing helpers the
sign path and the lease sweep need.
"""

from __future__ import annotations

import ipaddress
from datetime import datetime

import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID
from railway import ErrorCode
from railway.result import Result

from cert_broker.domain.models import GeneratedCsr, KeyType

log = structlog.get_logger()

RSA_KEY_SIZE = 2048

# X.520 upper bound for the commonName attribute
MAX_COMMON_NAME_LENGTH = 64


class CryptographyCsrGenerator:
    """
    Generate a key pair and a signed CSR for one identity.

    Implements the CsrGenerator port.
    """

    def generate(
        self,
        common_name: str,
        ip_sans: tuple[str, ...],
        dns_sans: tuple[str, ...],
        key_type: KeyType,
    ) -> Result[GeneratedCsr]:
        """
        Create a private key of `key_type` and a CSR signed with it.

        Names the CSR cannot carry (an over-long Common Name, a non-ASCII DNS
        SAN, a malformed IP SAN) are a VALIDATION_ERROR; KeyType.ANY is
        refused because it doesn't name an algorithm.
        """
        if key_type is KeyType.ANY:
            return Result.failure(
                ErrorCode.VALIDATION_ERROR, "key type \"any\" cannot be used to generate a key"
            )
        return (
            _check_names(common_name, dns_sans)
            .flat_map(lambda _: _parse_ip_sans(ip_sans))
            .flat_map(
                lambda addresses: Result.from_computation(
                    lambda: self._build(common_name, addresses, dns_sans, key_type),
                    ErrorCode.TECHNICAL_ERROR,
                    "Key or CSR generation failed",
                )
            )
        )

    def _build(
        self,
        common_name: str,
        addresses: list[ipaddress.IPv4Address | ipaddress.IPv6Address],
        dns_sans: tuple[str, ...],
        key_type: KeyType,
    ) -> GeneratedCsr:
        key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey
        if key_type is KeyType.ECDSA:
            key = ec.generate_private_key(ec.SECP256R1())
        else:
            key = rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)

        names: list[x509.GeneralName] = [x509.DNSName(name) for name in dns_sans]
        names += [x509.IPAddress(address) for address in addresses]

        builder = x509.CertificateSigningRequestBuilder().subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        )
        if names:
            builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)
        csr = builder.sign(key, hashes.SHA256())

        private_key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        log.debug("csr.generated", common_name=common_name, key_type=key_type.value)
        return GeneratedCsr(
            csr_pem=csr.public_bytes(serialization.Encoding.PEM).decode(),
            private_key_pem=private_key_pem,
            private_key_type=key_type.value,
        )


def _check_names(common_name: str, dns_sans: tuple[str, ...]) -> Result[str]:
    if not 1 <= len(common_name) <= MAX_COMMON_NAME_LENGTH:
        return Result.failure(
            ErrorCode.VALIDATION_ERROR,
            f"common name must be 1 to {MAX_COMMON_NAME_LENGTH} characters long,"
            f" got {len(common_name)}",
        )
    for name in dns_sans:
        if not name.isascii():
            return Result.failure(
                ErrorCode.VALIDATION_ERROR,
                f"DNS SAN {name} must be an ASCII (A-label) name; encode it with IDNA first",
            )
    return Result.success(common_name)


def _parse_ip_sans(
    ip_sans: tuple[str, ...],
) -> Result[list[ipaddress.IPv4Address | ipaddress.IPv6Address]]:
    addresses = []
    for raw in ip_sans:
        try:
            addresses.append(ipaddress.ip_address(raw.strip()))
        except ValueError as e:
            return Result.failure(ErrorCode.VALIDATION_ERROR, f"invalid IP SAN: {raw}", e)
    return Result.success(addresses)


def load_csr(csr_pem: str) -> Result[x509.CertificateSigningRequest]:
    """Parse a caller-supplied PEM CSR; anything unparsable is a user error."""
    return Result.from_computation(
        lambda: x509.load_pem_x509_csr(csr_pem.encode()),
        ErrorCode.VALIDATION_ERROR,
        "csr is not a valid PEM-encoded certificate signing request",
    )


def certificate_not_after(certificate_pem: bytes) -> Result[datetime]:
    """Expiry (timezone-aware, UTC) of a stored PEM certificate."""
    return Result.from_computation(
        lambda: x509.load_pem_x509_certificate(certificate_pem).not_valid_after_utc,
        ErrorCode.DATABASE_ERROR,
        "Stored certificate is not valid PEM",
    )
