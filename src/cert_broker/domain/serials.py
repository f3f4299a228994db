"""
Serial number normalization.

Records are keyed by lowercase colon-separated hex ("6d:00:00:01:2a").
Other tools print serials with hyphens, in uppercase, or as a bare hex run
(the certificate authority does the latter), so every serial is normalized
before it touches storage.
"""

from __future__ import annotations

import re

_BARE_HEX = re.compile(r"^[0-9a-f]+$")


def normalize_serial(serial: str) -> str:
    """
    Return the canonical storage form of a serial number.

    >>> normalize_serial("AA-BB-CC")
    'aa:bb:cc'
    >>> normalize_serial("6D0000012A")
    '6d:00:00:01:2a'
    """
    canonical = serial.strip().lower().replace("-", ":")
    if _BARE_HEX.match(canonical) and len(canonical) > 2:
        if len(canonical) % 2:
            canonical = "0" + canonical
        canonical = ":".join(canonical[i : i + 2] for i in range(0, len(canonical), 2))
    return canonical
