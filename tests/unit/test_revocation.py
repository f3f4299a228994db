"""
Unit tests for the revocation coordinator.

Storage is the in-memory adapter; the certificate authority's revoke API
is a MagicMock so every test can assert whether it was called.

Tests cover:
  - First revocation writes one record with both timestamps
  - Re-revocation returns the same record and never calls the CA again
  - Tainted instance short-circuits before touching anything
  - Lease-triggered vs direct handling of a certificate missing from storage
  - CA and lookup failures leave storage untouched
  - A lost conditional write returns the record that won
"""

from __future__ import annotations

import itertools
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from railway import ErrorCode, ResultAssertions
from railway.result import Result

from cert_broker.adapters.storage import InMemoryKeyValueStorage
from cert_broker.domain.models import (
    CERTS_PREFIX,
    EXTERNAL_ID_PREFIX,
    REVOKED_PREFIX,
    NoOp,
    RevocationRecord,
    Revoked,
)
from cert_broker.revocation import (
    REASON_UNSPECIFIED,
    REVOKE_COMMENT,
    InstanceState,
    RevocationCoordinator,
)

NOW = datetime(2024, 5, 1, 12, 30, 45, 123456, tzinfo=UTC)
SERIAL = "6d:00:00:01:2a"


def _ticking_clock(start: datetime = NOW) -> Callable[[], datetime]:
    """Each call returns a moment one minute after the previous one."""
    ticks = itertools.count()
    return lambda: start + timedelta(minutes=next(ticks))


@pytest.fixture()
def state() -> InstanceState:
    return InstanceState()


@pytest.fixture()
def coordinator(
    storage: InMemoryKeyValueStorage,
    revocation_client: MagicMock,
    state: InstanceState,
) -> RevocationCoordinator:
    return RevocationCoordinator(storage, revocation_client, state, clock=_ticking_clock())


# ─────────────────────── Happy path ───────────────────────


class TestFirstRevocation:
    """GIVEN a stored certificate WHEN it is revoked for the first time."""

    def test_returns_record_with_unix_and_rfc3339_time(
        self, coordinator: RevocationCoordinator, stored_certificate: Callable[..., str]
    ) -> None:
        stored_certificate()

        outcome = ResultAssertions.assert_success(coordinator.revoke(SERIAL))

        assert isinstance(outcome, Revoked)
        assert outcome.record.revocation_time == int(NOW.replace(microsecond=0).timestamp())
        assert outcome.record.revocation_time_rfc3339 == "2024-05-01T12:30:45Z"

    def test_calls_ca_with_external_id_reason_and_comment(
        self,
        coordinator: RevocationCoordinator,
        revocation_client: MagicMock,
        stored_certificate: Callable[..., str],
    ) -> None:
        stored_certificate(external_id=987)

        coordinator.revoke(SERIAL)

        revocation_client.revoke.assert_called_once_with(987, REASON_UNSPECIFIED, REVOKE_COMMENT)

    def test_persists_certificate_bytes_copy(
        self,
        coordinator: RevocationCoordinator,
        storage: InMemoryKeyValueStorage,
        stored_certificate: Callable[..., str],
    ) -> None:
        pem = stored_certificate()

        coordinator.revoke(SERIAL)

        entry = storage.get(REVOKED_PREFIX + SERIAL).value()
        record = RevocationRecord.from_json(SERIAL, entry.value)
        assert record.certificate_bytes == pem.encode()


class TestIdempotence:
    """Re-revoking a revoked serial is a pure read."""

    def test_second_revoke_returns_identical_time_without_ca_call(
        self,
        coordinator: RevocationCoordinator,
        revocation_client: MagicMock,
        stored_certificate: Callable[..., str],
    ) -> None:
        """
        GIVEN serial S revoked once (the clock advances between calls)
        WHEN S is revoked again
        THEN the same revocation_time is returned and the CA is called only once.
        """
        stored_certificate()

        first = ResultAssertions.assert_success(coordinator.revoke(SERIAL))
        second = ResultAssertions.assert_success(coordinator.revoke(SERIAL))

        assert first.record.revocation_time == second.record.revocation_time
        assert revocation_client.revoke.call_count == 1

    def test_differently_formatted_serial_hits_same_record(
        self,
        coordinator: RevocationCoordinator,
        revocation_client: MagicMock,
        stored_certificate: Callable[..., str],
    ) -> None:
        stored_certificate()

        first = ResultAssertions.assert_success(coordinator.revoke("6D-00-00-01-2A"))
        second = ResultAssertions.assert_success(coordinator.revoke("6d0000012a"))

        assert first.record == second.record
        assert revocation_client.revoke.call_count == 1

    def test_repeat_revocation_works_after_certificate_deleted(
        self,
        coordinator: RevocationCoordinator,
        storage: InMemoryKeyValueStorage,
        stored_certificate: Callable[..., str],
    ) -> None:
        stored_certificate()
        coordinator.revoke(SERIAL)
        storage.delete(CERTS_PREFIX + SERIAL)
        storage.delete(EXTERNAL_ID_PREFIX + SERIAL)

        outcome = ResultAssertions.assert_success(coordinator.revoke(SERIAL))

        assert isinstance(outcome, Revoked)

    def test_malformed_existing_record_is_internal_error(
        self,
        coordinator: RevocationCoordinator,
        storage: InMemoryKeyValueStorage,
    ) -> None:
        storage.put(REVOKED_PREFIX + SERIAL, b"not json")

        result = coordinator.revoke(SERIAL)

        ResultAssertions.assert_failure(result, ErrorCode.DATABASE_ERROR)


# ─────────────────────── Tainted instance ───────────────────────


class TestTaintedInstance:
    def test_returns_noop_even_for_unknown_serial(
        self,
        coordinator: RevocationCoordinator,
        state: InstanceState,
        revocation_client: MagicMock,
        storage: InMemoryKeyValueStorage,
    ) -> None:
        """
        GIVEN the instance is tainted
        WHEN a serial that was never issued is revoked
        THEN it returns NoOp, calls nothing and writes nothing.
        """
        state.taint()

        outcome = ResultAssertions.assert_success(coordinator.revoke("ff:ff"))

        assert isinstance(outcome, NoOp)
        revocation_client.revoke.assert_not_called()
        assert storage.list("").value() == []

    def test_tainted_check_precedes_serial_validation(
        self, coordinator: RevocationCoordinator, state: InstanceState
    ) -> None:
        state.taint()

        ResultAssertions.assert_success(coordinator.revoke(""))


# ─────────────────────── Missing certificate ───────────────────────


class TestMissingCertificateRecord:
    """The CA accepted the revoke, but certs/<serial> is gone."""

    @pytest.fixture(autouse=True)
    def _only_external_id(self, storage: InMemoryKeyValueStorage) -> None:
        storage.put(EXTERNAL_ID_PREFIX + SERIAL, b"1234")

    def test_lease_triggered_is_noop_without_write(
        self, coordinator: RevocationCoordinator, storage: InMemoryKeyValueStorage
    ) -> None:
        outcome = ResultAssertions.assert_success(
            coordinator.revoke(SERIAL, from_lease_expiry=True)
        )

        assert isinstance(outcome, NoOp)
        assert not storage.get(REVOKED_PREFIX + SERIAL).value().exists

    def test_direct_is_not_found_user_error(
        self, coordinator: RevocationCoordinator, storage: InMemoryKeyValueStorage
    ) -> None:
        result = coordinator.revoke(SERIAL, from_lease_expiry=False)

        error = ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)
        assert SERIAL in error.message
        assert not storage.get(REVOKED_PREFIX + SERIAL).value().exists


# ─────────────────────── Failures ───────────────────────


class TestFailures:
    def test_empty_serial_is_validation_error(self, coordinator: RevocationCoordinator) -> None:
        ResultAssertions.assert_failure(coordinator.revoke("  "), ErrorCode.VALIDATION_ERROR)

    def test_missing_external_id_is_internal_error(
        self,
        coordinator: RevocationCoordinator,
        revocation_client: MagicMock,
        storage: InMemoryKeyValueStorage,
        make_certificate: Callable[..., str],
    ) -> None:
        storage.put(CERTS_PREFIX + SERIAL, make_certificate().encode())

        result = coordinator.revoke(SERIAL)

        ResultAssertions.assert_failure(result, ErrorCode.DATABASE_ERROR)
        ResultAssertions.assert_failure_message_contains(
            result, "Unable to retrieve certificate ID"
        )
        revocation_client.revoke.assert_not_called()

    def test_unparsable_external_id_is_internal_error(
        self, coordinator: RevocationCoordinator, storage: InMemoryKeyValueStorage
    ) -> None:
        storage.put(EXTERNAL_ID_PREFIX + SERIAL, b'"abc"')

        ResultAssertions.assert_failure(coordinator.revoke(SERIAL), ErrorCode.DATABASE_ERROR)

    def test_ca_rejection_writes_nothing(
        self,
        coordinator: RevocationCoordinator,
        revocation_client: MagicMock,
        storage: InMemoryKeyValueStorage,
        stored_certificate: Callable[..., str],
    ) -> None:
        """
        GIVEN the CA answers the revoke call with an error
        WHEN revoke is called
        THEN the failure is returned and no revocation record exists.
        """
        stored_certificate()
        revocation_client.revoke.return_value = Result.failure(
            ErrorCode.EXTERNAL_SERVICE_ERROR, "revocation failed: server returned 500: boom"
        )

        result = coordinator.revoke(SERIAL)

        ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        assert not storage.get(REVOKED_PREFIX + SERIAL).value().exists

    def test_retry_after_ca_failure_can_succeed(
        self,
        coordinator: RevocationCoordinator,
        revocation_client: MagicMock,
        stored_certificate: Callable[..., str],
    ) -> None:
        stored_certificate()
        revocation_client.revoke.side_effect = [
            Result.failure(ErrorCode.EXTERNAL_SERVICE_ERROR, "revocation request failed"),
            Result.success(200),
        ]

        ResultAssertions.assert_failure(coordinator.revoke(SERIAL))
        outcome = ResultAssertions.assert_success(coordinator.revoke(SERIAL))

        assert isinstance(outcome, Revoked)


# ─────────────────────── Concurrent first revocations ───────────────────────


class _RacingStorage(InMemoryKeyValueStorage):
    """Another writer commits its revocation record just before ours."""

    def __init__(self, winner: RevocationRecord) -> None:
        super().__init__()
        self._winner = winner

    def put_if_absent(self, key: str, value: bytes) -> Result[bool]:
        if key.startswith(REVOKED_PREFIX):
            super().put_if_absent(key, self._winner.to_json())
        return super().put_if_absent(key, value)


class TestConcurrentRevocation:
    def test_loser_returns_winners_record(
        self,
        revocation_client: MagicMock,
        state: InstanceState,
        make_certificate: Callable[..., str],
    ) -> None:
        """
        GIVEN another caller's revocation record lands between our check and our write
        WHEN our conditional write finds the key taken
        THEN we return the other caller's record, not our own timestamp.
        """
        pem = make_certificate().encode()
        winner = RevocationRecord.create(SERIAL, pem, NOW - timedelta(hours=1))
        storage = _RacingStorage(winner)
        storage.put(CERTS_PREFIX + SERIAL, pem)
        storage.put(EXTERNAL_ID_PREFIX + SERIAL, b"1234")
        coordinator = RevocationCoordinator(storage, revocation_client, state, clock=lambda: NOW)

        outcome = ResultAssertions.assert_success(coordinator.revoke(SERIAL))

        assert outcome.record.revocation_time == winner.revocation_time
        stored = RevocationRecord.from_json(
            SERIAL, storage.get(REVOKED_PREFIX + SERIAL).value().value
        )
        assert stored.revocation_time == winner.revocation_time
