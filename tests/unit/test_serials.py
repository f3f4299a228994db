"""Unit tests for serial number normalization."""

from __future__ import annotations

import pytest

from cert_broker.domain.serials import normalize_serial


class TestNormalizeSerial:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("aa:bb:cc", "aa:bb:cc"),
            ("AA-BB-CC", "aa:bb:cc"),
            ("Aa:Bb-cC", "aa:bb:cc"),
            ("  aa:bb:cc\n", "aa:bb:cc"),
            ("6D0000012A", "6d:00:00:01:2a"),
            ("abc", "0a:bc"),
            ("0f", "0f"),
        ],
    )
    def test_canonical_form(self, raw: str, expected: str) -> None:
        assert normalize_serial(raw) == expected

    def test_differently_formatted_inputs_address_same_key(self) -> None:
        """
        GIVEN "AA-BB-CC" and "aa:bb:cc"
        WHEN both are normalized
        THEN they produce the same storage key.
        """
        assert normalize_serial("AA-BB-CC") == normalize_serial("aa:bb:cc")

    def test_normalization_is_idempotent(self) -> None:
        once = normalize_serial("6D-00-00-01-2A")
        assert normalize_serial(once) == once

    def test_empty_stays_empty(self) -> None:
        assert normalize_serial("   ") == ""
