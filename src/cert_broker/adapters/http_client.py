"""
HTTP adapter — certificate authority enrollment and revocation via httpx.

Adapter layer — implements EnrollmentClient and RevocationClient ports.

Both adapters share ONE pooled httpx.Client (basic auth, base URL, timeout,
keep-alive expiry). Idle connections age out through the pool's
keepalive_expiry; nothing force-closes the pool per request.

  POST {api_path}/Enrollment/CSR          → certificate + chain + serial + id
  POST {api_path}/Certificates/Revoke     → 200/204 on success

Retry policy:
  - enrollment: never retried here; a resubmitted CSR can issue twice
  - revocation: tenacity retry on transient transport errors only; the CA
    treats repeated revocation of the same id as a no-op

Deadlines are per process, not per call: every request uses the client's
httpx.Timeout from CaSettings.timeout_seconds. Request handlers run
synchronously and carry no cancellation handle, so a client that disconnects
does not abort a CA call already in flight; the timeout bounds it instead.

All HTTP errors are captured into Result failures — no exceptions leak to
the business logic layer.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog
from railway import ErrorCode, FailureDescription
from railway.result import Result
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cert_broker.domain.models import Enrollment

log = structlog.get_logger()

ENROLLMENT_PATH = "/Enrollment/CSR"
REVOKE_PATH = "/Certificates/Revoke"
REVOKE_SUCCESS_STATUSES = frozenset({200, 204})

_CA_HEADERS = {
    "x-keyfactor-requested-with": "APIClient",
    "x-keyfactor-api-version": "1",
}


class RevocationRejectedError(Exception):
    """The certificate authority answered the revoke call with a non-success status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"revocation failed: server returned {status_code}")
        self.status_code = status_code
        self.body = body


def create_http_client(
    base_url: str,
    username: str,
    password: str,
    timeout: float = 60,
    keepalive_expiry: float = 30,
    max_connections: int = 20,
) -> httpx.Client:
    """Build the pooled client shared by the enrollment and revocation adapters."""
    return httpx.Client(
        base_url=base_url,
        auth=httpx.BasicAuth(username, password),
        timeout=httpx.Timeout(timeout),
        limits=httpx.Limits(
            max_connections=max_connections,
            keepalive_expiry=keepalive_expiry,
        ),
        headers=_CA_HEADERS,
    )


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _rfc3339(moment: datetime) -> str:
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _api_url(api_path: str, endpoint: str) -> str:
    path = api_path.strip("/")
    return f"/{path}{endpoint}" if path else endpoint


class HttpEnrollmentClient:
    """
    Submit CSRs to the certificate authority's enrollment endpoint.

    Implements the EnrollmentClient port.
    """

    def __init__(
        self,
        client: httpx.Client,
        api_path: str,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._client = client
        self._url = _api_url(api_path, ENROLLMENT_PATH)
        self._clock = clock

    def submit(
        self,
        csr_pem: str,
        ca: str,
        template: str,
        metadata_json: str,
    ) -> Result[Enrollment]:
        """
        Enroll a CSR and return the issued certificate, chain, serial and id.

        Returns Result.failure(EXTERNAL_SERVICE_ERROR, ...) wrapping the cause
        on any transport error, non-2xx status or malformed response body.
        """
        return Result.from_computation(
            lambda: self._do_enroll(csr_pem, ca, template, metadata_json),
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            "could not enroll certificate",
        )

    def _do_enroll(self, csr_pem: str, ca: str, template: str, metadata_json: str) -> Enrollment:
        response = self._client.post(
            self._url,
            headers={"x-certificateformat": "PEM"},
            json={
                "CSR": csr_pem,
                "CertificateAuthority": ca,
                "Template": template,
                "Metadata": json.loads(metadata_json),
                "IncludeChain": True,
                "Timestamp": _rfc3339(self._clock()),
                "SANs": {},
            },
        )
        response.raise_for_status()
        enrollment = _parse_enrollment(response.json())
        log.info(
            "enrollment.complete",
            serial=enrollment.serial,
            external_id=enrollment.external_certificate_id,
        )
        return enrollment


def _parse_enrollment(body: dict[str, Any]) -> Enrollment:
    info = body["CertificateInformation"]
    certificates: list[str] = info["Certificates"]
    if not certificates:
        raise ValueError("enrollment response contains no certificates")
    return Enrollment(
        certificate_pem=certificates[0],
        issuing_ca_pem="\n".join(certificates[1:]),
        serial=info["SerialNumber"],
        external_certificate_id=int(info["KeyfactorID"]),
    )


class HttpRevocationClient:
    """
    Revoke certificates at the certificate authority by external id.

    Implements the RevocationClient port.
    Uses tenacity retry on transient network errors only.
    """

    def __init__(
        self,
        client: httpx.Client,
        api_path: str,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._client = client
        self._url = _api_url(api_path, REVOKE_PATH)
        self._clock = clock

    def revoke(self, external_certificate_id: int, reason: int, comment: str) -> Result[int]:
        """
        Ask the certificate authority to revoke one certificate now.

        Returns Result[int] with the HTTP status (200 or 204) on success, or
        Result.failure(EXTERNAL_SERVICE_ERROR, ...) carrying the status and
        response body otherwise.
        """
        return Result.from_computation(
            lambda: self._do_revoke(external_certificate_id, reason, comment),
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            "revocation request failed",
        ).map_failure(_describe_rejection)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=0.1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    def _do_revoke(self, external_certificate_id: int, reason: int, comment: str) -> int:
        """HTTP call with retry — exceptions caught by from_computation."""
        payload = {
            "CertificateIds": [external_certificate_id],
            "Reason": reason,
            "Comment": comment,
            "EffectiveDate": _rfc3339(self._clock()),
        }
        log.debug("revocation.sending", external_id=external_certificate_id)
        response = self._client.post(self._url, json=payload)
        if response.status_code not in REVOKE_SUCCESS_STATUSES:
            log.info(
                "revocation.rejected",
                external_id=external_certificate_id,
                status=response.status_code,
                body=response.text,
            )
            raise RevocationRejectedError(response.status_code, response.text)
        log.info("revocation.accepted", external_id=external_certificate_id)
        return response.status_code


def _describe_rejection(failure: FailureDescription) -> FailureDescription:
    """Put the CA's status and body into the failure message when it rejected the call."""
    exc = failure.exception
    if isinstance(exc, RevocationRejectedError):
        return FailureDescription(
            code=failure.code,
            message=f"{exc}: {exc.body}",
            exception=exc,
        )
    return failure
