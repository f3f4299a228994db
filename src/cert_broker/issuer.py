"""
Issuer — the issue and sign pipelines.

Orchestration only: policy, key generation, enrollment and storage are
injected via ports (Protocol interfaces).

Issue (server-side key):
  reject key_type "any"
    → require CN + DNS SANs
      → validate_identity(CN, SANs, role)
        → resolve metadata / CA / template
          → generate(key, CSR)
            → submit(CSR)
              → persist (unless role.no_store)

Sign (caller CSR, no domain policy):
  parse CSR → resolve metadata / CA / template → submit(CSR) → persist

Every input check happens before the first network call. Enrollment
failures are returned as-is; retrying them is the caller's decision.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

import structlog
from railway import ErrorCode
from railway.result import Result

from cert_broker.adapters.csr_generator import load_csr
from cert_broker.domain.models import (
    CERTS_PREFIX,
    EXTERNAL_ID_PREFIX,
    CertificateRecord,
    Enrollment,
    GeneratedCsr,
    IssuanceDefaults,
    IssuedCertificate,
    IssueRequest,
    KeyType,
    Role,
    SignRequest,
    ValidatedIdentity,
)
from cert_broker.domain.policy import validate_identity
from cert_broker.domain.ports import CsrGenerator, EnrollmentClient, KeyValueStorage
from cert_broker.domain.serials import normalize_serial

log = structlog.get_logger()

ANY_KEY_TYPE_NOT_ALLOWED = 'role key type "any" not allowed for issuing certificates, only signing'


@dataclass(frozen=True, slots=True)
class EnrollmentTarget:
    """CA, template and metadata a CSR is submitted with."""

    ca: str
    template: str
    metadata: str


def resolve_metadata(metadata: str) -> Result[str]:
    """Empty metadata means "{}"; anything else must parse as JSON."""
    candidate = metadata or "{}"
    try:
        json.loads(candidate)
    except ValueError as e:
        log.error("issuer.invalid_metadata", metadata=candidate)
        return Result.failure(
            ErrorCode.VALIDATION_ERROR, f"'{candidate}' is not a valid JSON string", e
        )
    return Result.success(candidate)


def resolve_target(
    ca: str | None,
    template: str | None,
    metadata: str,
    defaults: IssuanceDefaults,
) -> Result[EnrollmentTarget]:
    """Request values win; configured defaults fill the gaps."""
    resolved_ca = ca or defaults.ca
    resolved_template = template or defaults.template
    log.debug("issuer.target_resolved", ca=resolved_ca, template=resolved_template)
    return resolve_metadata(metadata).map(
        lambda meta: EnrollmentTarget(ca=resolved_ca, template=resolved_template, metadata=meta)
    )


def _require_identity(request: IssueRequest) -> Result[IssueRequest]:
    if not request.common_name:
        return Result.failure(
            ErrorCode.VALIDATION_ERROR, "common_name must be provided to issue certificate"
        )
    if not [san for san in request.dns_sans if san]:
        return Result.failure(
            ErrorCode.VALIDATION_ERROR, "dns_sans must be provided to issue certificate"
        )
    return Result.success(request)


def persist_record(
    role: Role,
    enrollment: Enrollment,
    storage: KeyValueStorage,
) -> Result[CertificateRecord]:
    """
    Store certs/<serial> and kfId/<serial> unless the role says not to.

    The two keys are independent writes. kfId is written last because
    revocation needs it; a certificate without it can still be fetched.
    """
    record = CertificateRecord(
        serial=normalize_serial(enrollment.serial),
        certificate_pem=enrollment.certificate_pem,
        issuing_ca_pem=enrollment.issuing_ca_pem,
        external_certificate_id=enrollment.external_certificate_id,
    )
    if role.no_store:
        log.info("issuer.not_stored", serial=record.serial, role=role.name)
        return Result.success(record)
    return (
        storage.put(CERTS_PREFIX + record.serial, record.certificate_pem.encode())
        .flat_map(
            lambda _: storage.put(
                EXTERNAL_ID_PREFIX + record.serial,
                json.dumps(record.external_certificate_id).encode(),
            )
        )
        .map(lambda _: record)
        .peek(lambda r: log.info("issuer.stored", serial=r.serial, role=role.name))
    )


def _enroll(
    csr_pem: str,
    target: EnrollmentTarget,
    role: Role,
    enrollment_client: EnrollmentClient,
    storage: KeyValueStorage,
) -> Result[CertificateRecord]:
    return enrollment_client.submit(
        csr_pem, target.ca, target.template, target.metadata
    ).flat_map(lambda enrollment: persist_record(role, enrollment, storage))


def issue_certificate(
    role: Role,
    request: IssueRequest,
    defaults: IssuanceDefaults,
    csr_generator: CsrGenerator,
    enrollment_client: EnrollmentClient,
    storage: KeyValueStorage,
) -> Result[IssuedCertificate]:
    """
    Generate a key pair for a policy-checked identity and enroll it.

    Returns the certificate, the issuing CA chain, the canonical serial and
    the private key.
    """
    if role.key_type is KeyType.ANY:
        return Result.failure(ErrorCode.VALIDATION_ERROR, ANY_KEY_TYPE_NOT_ALLOWED)

    def _generate_and_enroll(
        identity: ValidatedIdentity, target: EnrollmentTarget
    ) -> Result[IssuedCertificate]:
        return csr_generator.generate(
            identity.common_name, request.ip_sans, identity.dns_sans, role.key_type
        ).flat_map(
            lambda generated: _enroll(
                generated.csr_pem, target, role, enrollment_client, storage
            ).map(lambda record: _with_private_key(record, generated))
        )

    return (
        _require_identity(request)
        .flat_map(lambda req: validate_identity(req.common_name, req.dns_sans, role))
        .flat_map(
            lambda identity: resolve_target(
                request.ca, request.template, request.metadata, defaults
            ).flat_map(lambda target: _generate_and_enroll(identity, target))
        )
        .peek(lambda issued: log.info("issuer.issued", serial=issued.serial_number, role=role.name))
    )


def _with_private_key(record: CertificateRecord, generated: GeneratedCsr) -> IssuedCertificate:
    return IssuedCertificate(
        certificate=record.certificate_pem,
        issuing_ca=record.issuing_ca_pem,
        serial_number=record.serial,
        private_key=generated.private_key_pem,
        private_key_type=generated.private_key_type,
    )


def sign_certificate(
    role: Role,
    request: SignRequest,
    defaults: IssuanceDefaults,
    enrollment_client: EnrollmentClient,
    storage: KeyValueStorage,
) -> Result[IssuedCertificate]:
    """
    Enroll a caller-supplied CSR as-is.

    The CSR's subject is trusted; no domain policy is applied on this path.
    """
    return (
        load_csr(request.csr_pem)
        .flat_map(
            lambda _: resolve_target(request.ca, request.template, request.metadata, defaults)
        )
        .flat_map(
            lambda target: _enroll(request.csr_pem, target, role, enrollment_client, storage)
        )
        .map(
            lambda record: IssuedCertificate(
                certificate=record.certificate_pem,
                issuing_ca=record.issuing_ca_pem,
                serial_number=record.serial,
            )
        )
        .peek(lambda issued: log.info("issuer.signed", serial=issued.serial_number, role=role.name))
    )
