"""
Certificate service — the operations exposed to the HTTP layer.

Looks up the role, then hands off to the issue/sign pipelines, the
revocation coordinator or the read pipeline. Holds the issuance defaults
as an explicit value; `reload_defaults` is the only way they change.
"""

from __future__ import annotations

import structlog
from railway.result import Result

from cert_broker.certificates import fetch_certificate, list_certificates
from cert_broker.domain.models import (
    FetchOutcome,
    IssuanceDefaults,
    IssuedCertificate,
    IssueRequest,
    RevocationOutcome,
    Role,
    SignRequest,
)
from cert_broker.domain.ports import CsrGenerator, EnrollmentClient, KeyValueStorage, RoleStore
from cert_broker.issuer import issue_certificate, sign_certificate
from cert_broker.revocation import RevocationCoordinator

log = structlog.get_logger()


class CertificateService:
    """Issue, sign, revoke, fetch and list certificates; manage roles."""

    def __init__(
        self,
        roles: RoleStore,
        storage: KeyValueStorage,
        csr_generator: CsrGenerator,
        enrollment_client: EnrollmentClient,
        revocations: RevocationCoordinator,
        defaults: IssuanceDefaults,
    ) -> None:
        self._roles = roles
        self._storage = storage
        self._csr_generator = csr_generator
        self._enrollment_client = enrollment_client
        self._revocations = revocations
        self._defaults = defaults

    @property
    def defaults(self) -> IssuanceDefaults:
        return self._defaults

    def reload_defaults(self, defaults: IssuanceDefaults) -> IssuanceDefaults:
        """Swap the issuance defaults. Requests already running keep their snapshot."""
        previous, self._defaults = self._defaults, defaults
        log.info(
            "service.defaults_reloaded",
            ca=defaults.ca,
            template=defaults.template,
            previous_ca=previous.ca,
            previous_template=previous.template,
        )
        return defaults

    def issue(self, request: IssueRequest) -> Result[IssuedCertificate]:
        defaults = self._defaults
        return self._roles.get_role(request.role).flat_map(
            lambda role: issue_certificate(
                role,
                request,
                defaults,
                self._csr_generator,
                self._enrollment_client,
                self._storage,
            )
        )

    def sign(self, request: SignRequest) -> Result[IssuedCertificate]:
        defaults = self._defaults
        return self._roles.get_role(request.role).flat_map(
            lambda role: sign_certificate(
                role, request, defaults, self._enrollment_client, self._storage
            )
        )

    def revoke(self, serial: str) -> Result[RevocationOutcome]:
        """Administrative revocation; inconsistencies are reported, not hidden."""
        return self._revocations.revoke(serial, from_lease_expiry=False)

    def revoke_expired(self, serial: str) -> Result[RevocationOutcome]:
        """Lease-triggered revocation; a certificate missing from storage is a no-op."""
        return self._revocations.revoke(serial, from_lease_expiry=True)

    def fetch_certificate(self, serial: str) -> Result[FetchOutcome]:
        return fetch_certificate(self._storage, serial)

    def list_certificates(self) -> Result[list[str]]:
        return list_certificates(self._storage)

    def get_role(self, name: str) -> Result[Role]:
        return self._roles.get_role(name)

    def put_role(self, role: Role) -> Result[Role]:
        return self._roles.put_role(role).peek(
            lambda r: log.info("service.role_written", role=r.name)
        )

    def list_roles(self) -> Result[list[str]]:
        return self._roles.list_roles()
