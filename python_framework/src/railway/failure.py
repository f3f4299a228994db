"""
Failure description — structured error information for the failure track.

Every failure carries an ErrorCode and a human-readable message. The code
decides two things downstream: the HTTP status it maps to, and whether the
message is safe to show to the caller (user errors) or must stay in the
server-side logs (internal errors).
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique


@unique
class ErrorCode(Enum):
    """
    Structured error codes for the failure track.

    Client errors (4xx) are caller-correctable and their messages are returned
    verbatim. Server errors (5xx) are opaque to callers.
    """

    # --- Client-side errors (4xx HTTP range) ---
    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Malformed input: missing fields, bad JSON, unparsable CSR (→ 400)."""

    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    """Request not permitted by role policy (→ 403)."""

    NOT_FOUND = "NOT_FOUND"
    """Role or certificate doesn't exist (→ 404)."""

    # --- Server-side errors (5xx HTTP range) ---
    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Unexpected exception inside an execution context (→ 500)."""

    DATABASE_ERROR = "DATABASE_ERROR"
    """Storage failure or malformed stored record (→ 500)."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """System misconfiguration (→ 500)."""

    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    """Certificate authority API failure (→ 502)."""

    @property
    def is_user_error(self) -> bool:
        """True for caller-correctable codes whose message may be shown as-is."""
        return self in _USER_ERRORS


_USER_ERRORS = frozenset(
    {ErrorCode.VALIDATION_ERROR, ErrorCode.AUTHORIZATION_ERROR, ErrorCode.NOT_FOUND}
)


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor carrying error code, message, optional exception, and timestamp.

    >>> desc = FailureDescription(ErrorCode.NOT_FOUND, "unknown role: web")
    >>> desc.code.is_user_error
    True
    """

    code: ErrorCode
    message: str
    exception: BaseException | None = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def full_stack_trace(self) -> str:
        """Message followed by the formatted exception chain, if any."""
        if self.exception is None:
            return self.message
        tb = "".join(
            traceback.format_exception(
                type(self.exception), self.exception, self.exception.__traceback__
            )
        )
        return f"{self.message}\n{tb}"

    def __str__(self) -> str:
        if self.exception is None:
            return f"{self.code.value}: {self.message}"
        return f"{self.code.value}: {self.message} ({self.exception})"
