"""
Lease expiry — revoke stored certificates whose validity has ended.

This is the lease-triggered revocation path: each expired, not yet revoked
certificate goes through the revocation coordinator with
from_lease_expiry=True, so a certificate deleted from storage in the
meantime is let go instead of failing on every run.

One certificate's failure is logged and does not stop the sweep.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from railway.result import Failure, Result, Success

from cert_broker.adapters.csr_generator import certificate_not_after
from cert_broker.domain.models import CERTS_PREFIX, REVOKED_PREFIX, Revoked
from cert_broker.domain.ports import KeyValueStorage
from cert_broker.service import CertificateService

log = structlog.get_logger()


def _is_expired_and_active(storage: KeyValueStorage, serial: str, now: datetime) -> Result[bool]:
    revoked = storage.get(REVOKED_PREFIX + serial)
    match revoked:
        case Failure(err):
            return Failure(err)
        case Success(entry) if entry.exists:
            return Result.success(False)

    match storage.get(CERTS_PREFIX + serial):
        case Failure(err):
            return Failure(err)
        case Success(entry) if not entry.exists:
            return Result.success(False)
        case Success(entry):
            return certificate_not_after(entry.value).map(lambda not_after: not_after <= now)
    raise TypeError("unreachable")  # pragma: no cover


def sweep_expired_leases(
    service: CertificateService,
    storage: KeyValueStorage,
    now: datetime,
) -> Result[int]:
    """
    Revoke every stored certificate that expired at or before `now`.

    Returns the number of certificates newly revoked. Fails only when the
    certificate list itself can't be read.
    """
    return storage.list(CERTS_PREFIX).map(
        lambda serials: sum(_sweep_one(service, storage, serial, now) for serial in serials)
    )


def _sweep_one(
    service: CertificateService,
    storage: KeyValueStorage,
    serial: str,
    now: datetime,
) -> int:
    result = _is_expired_and_active(storage, serial, now).flat_map(
        lambda expired: service.revoke_expired(serial).map(
            lambda outcome: isinstance(outcome, Revoked)
        )
        if expired
        else Result.success(False)
    )
    match result:
        case Success(True):
            log.info("leases.revoked", serial=serial)
            return 1
        case Failure(err):
            log.error("leases.revoke_failed", serial=serial, failure=str(err))
    return 0
