"""
Revocation coordinator — idempotent revocation against the certificate authority.

States per serial:

  NotRevoked ──(CA accepts revoke, record written)──▶ Revoked
  Revoked    ──(revoke again)──▶ Revoked, same record, no CA call

The revoked/<serial> record is the only "already revoked" signal, so the
flow for one serial is:

  1. instance tainted                 → NoOp (state would be discarded anyway)
  2. normalize serial
  3. revoked/<serial> exists          → return it unchanged
  4. kfId/<serial>                    → external id (missing = internal error)
  5. CA revoke call                   → failure leaves storage untouched
  6. certs/<serial> missing           → lease-triggered: NoOp, direct: NOT_FOUND
  7. put_if_absent(revoked/<serial>)  → Revoked

No lock spans steps 3–7. Two concurrent callers may both reach the CA
(harmless, the CA revokes idempotently); the conditional write in step 7
lets exactly one record win and the loser returns the winner's record, so
revocation_time is decided by the storage layer, not by call order.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from railway import ErrorCode
from railway.result import Failure, Result, Success

from cert_broker.domain.models import (
    CERTS_PREFIX,
    EXTERNAL_ID_PREFIX,
    REVOKED_PREFIX,
    NoOp,
    RevocationOutcome,
    RevocationRecord,
    Revoked,
)
from cert_broker.domain.ports import KeyValueStorage, RevocationClient
from cert_broker.domain.serials import normalize_serial

log = structlog.get_logger()

REASON_UNSPECIFIED = 0
REVOKE_COMMENT = "via cert-broker"


class InstanceState:
    """
    Tainted flag of a running instance.

    Set once the instance is being torn down; revocations after that point
    are no-ops because nothing they write would survive.
    """

    def __init__(self) -> None:
        self._tainted = threading.Event()

    @property
    def tainted(self) -> bool:
        return self._tainted.is_set()

    def taint(self) -> None:
        self._tainted.set()


def _utc_now() -> datetime:
    return datetime.now(UTC)


def decode_revocation(serial: str, raw: bytes) -> Result[RevocationRecord]:
    return Result.from_computation(
        lambda: RevocationRecord.from_json(serial, raw),
        ErrorCode.DATABASE_ERROR,
        f"error decoding existing revocation info for serial {serial}",
    )


class RevocationCoordinator:
    """Runs the revocation state machine over storage and the CA's revoke API."""

    def __init__(
        self,
        storage: KeyValueStorage,
        client: RevocationClient,
        state: InstanceState,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._storage = storage
        self._client = client
        self._state = state
        self._clock = clock

    def revoke(self, serial: str, from_lease_expiry: bool = False) -> Result[RevocationOutcome]:
        """
        Revoke `serial` unless it already is.

        Returns Revoked(record) for new and repeated revocations, NoOp when
        nothing needed doing (tainted instance, or a lease-triggered revoke of
        a certificate no longer in storage). Direct revocation of a missing
        certificate is a NOT_FOUND failure.
        """
        if self._state.tainted:
            log.debug("revocation.skipped_tainted", serial=serial)
            return Result.success(NoOp("instance tainted"))

        canonical = normalize_serial(serial)
        if not canonical:
            return Result.failure(ErrorCode.VALIDATION_ERROR, "The serial number must be provided")

        match self._storage.get(REVOKED_PREFIX + canonical):
            case Failure(err):
                return Failure(err)
            case Success(entry) if entry.exists:
                log.info("revocation.already_revoked", serial=canonical)
                return decode_revocation(canonical, entry.value).map(Revoked)

        return self._revoke_at_ca(canonical, from_lease_expiry)

    def _revoke_at_ca(self, serial: str, from_lease_expiry: bool) -> Result[RevocationOutcome]:
        return (
            self._external_id(serial)
            .flat_map(
                lambda external_id: self._client.revoke(
                    external_id, REASON_UNSPECIFIED, REVOKE_COMMENT
                )
            )
            .peek_failure(
                lambda err: log.error("revocation.failed", serial=serial, failure=str(err))
            )
            .flat_map(lambda _: self._record_revocation(serial, from_lease_expiry))
        )

    def _external_id(self, serial: str) -> Result[int]:
        return (
            self._storage.get(EXTERNAL_ID_PREFIX + serial)
            .ensure(
                lambda entry: entry.exists,
                ErrorCode.DATABASE_ERROR,
                f"Unable to retrieve certificate ID for cert with serial: {serial}",
            )
            .flat_map(
                lambda entry: Result.from_computation(
                    lambda: int(json.loads(entry.value)),
                    ErrorCode.DATABASE_ERROR,
                    f"Unable to parse stored certificate ID for cert with serial: {serial}",
                )
            )
        )

    def _record_revocation(self, serial: str, from_lease_expiry: bool) -> Result[RevocationOutcome]:
        match self._storage.get(CERTS_PREFIX + serial):
            case Failure(err):
                return Failure(err)
            case Success(entry) if not entry.exists:
                if from_lease_expiry:
                    # Retrying would fail the same way forever; let the lease go.
                    log.warning(
                        "revocation.expired_certificate_missing",
                        serial=serial,
                        outcome="treated as success",
                    )
                    return Result.success(NoOp("certificate not found in storage"))
                return Result.failure(
                    ErrorCode.NOT_FOUND, f"certificate with serial {serial} not found"
                )
            case Success(entry):
                record = RevocationRecord.create(serial, entry.value, self._clock())
                return self._commit(record)
        raise TypeError("unreachable")  # pragma: no cover

    def _commit(self, record: RevocationRecord) -> Result[RevocationOutcome]:
        key = REVOKED_PREFIX + record.serial
        return self._storage.put_if_absent(key, record.to_json()).flat_map(
            lambda created: (
                self._committed(record) if created else self._concurrent_winner(record.serial)
            )
        )

    def _committed(self, record: RevocationRecord) -> Result[RevocationOutcome]:
        log.info(
            "revocation.recorded",
            serial=record.serial,
            revocation_time=record.revocation_time,
        )
        return Result.success(Revoked(record))

    def _concurrent_winner(self, serial: str) -> Result[RevocationOutcome]:
        log.info("revocation.lost_race", serial=serial)
        return (
            self._storage.get(REVOKED_PREFIX + serial)
            .ensure(
                lambda entry: entry.exists,
                ErrorCode.DATABASE_ERROR,
                f"revocation record for serial {serial} vanished after a conflicting write",
            )
            .flat_map(lambda entry: decode_revocation(serial, entry.value))
            .map(Revoked)
        )
