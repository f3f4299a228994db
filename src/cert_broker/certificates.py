"""
Certificate reads — fetch one certificate by serial, list all serials.

Fetch is a short pipeline; each step either continues or settles the
outcome, and the caller matches the final Result exactly once:

  require serial        → VALIDATION_ERROR when empty
    → normalize
      → certs/<serial>  → NotFound when absent, DATABASE_ERROR on failure
        → decode        → DATABASE_ERROR when the stored bytes are not UTF-8
          → revoked/<serial> (optional) → revocation_time, 0 when not revoked
            → Found
"""

from __future__ import annotations

from railway import ErrorCode
from railway.result import Failure, Result, Success

from cert_broker.domain.models import (
    CERTS_PREFIX,
    REVOKED_PREFIX,
    FetchOutcome,
    Found,
    NotFound,
    RevocationRecord,
)
from cert_broker.domain.ports import KeyValueStorage
from cert_broker.domain.serials import normalize_serial


def _revocation_time(storage: KeyValueStorage, serial: str) -> Result[int]:
    match storage.get(REVOKED_PREFIX + serial):
        case Failure(err):
            return Failure(err)
        case Success(entry) if entry.exists:
            return Result.from_computation(
                lambda: RevocationRecord.from_json(serial, entry.value).revocation_time,
                ErrorCode.VALIDATION_ERROR,
                f"Error decoding revocation entry for serial {serial}",
            )
    return Result.success(0)


def fetch_certificate(storage: KeyValueStorage, serial: str) -> Result[FetchOutcome]:
    """Look up a stored certificate and its revocation time, if revoked."""
    if not serial:
        return Result.failure(ErrorCode.VALIDATION_ERROR, "The serial number must be provided")
    canonical = normalize_serial(serial)

    match storage.get(CERTS_PREFIX + canonical):
        case Failure(err):
            return Failure(err)
        case Success(entry) if not entry.exists:
            return Result.success(NotFound(canonical))
        case Success(entry):
            return Result.from_computation(
                lambda: entry.value.decode(),
                ErrorCode.DATABASE_ERROR,
                f"Stored certificate for serial {canonical} is not valid PEM text",
            ).flat_map(
                lambda certificate: _revocation_time(storage, canonical).map(
                    lambda revoked_at: Found(
                        serial=canonical, certificate=certificate, revocation_time=revoked_at
                    )
                )
            )
    raise TypeError("unreachable")  # pragma: no cover


def list_certificates(storage: KeyValueStorage) -> Result[list[str]]:
    """Serials of every stored certificate, in storage order."""
    return storage.list(CERTS_PREFIX)
