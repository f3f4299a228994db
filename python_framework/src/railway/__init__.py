"""
Railway-Oriented Programming (ROP) support for cert-broker.

Explicit, composable error handling — no exceptions in business logic.

    from railway import ErrorCode, Result

    def require_serial(serial: str) -> Result[str]:
        if not serial:
            return Result.failure(ErrorCode.VALIDATION_ERROR, "The serial number must be provided")
        return Result.success(serial)
"""

from railway.assertions import ResultAssertions
from railway.execution import (
    ExecutionContext,
    LoggingExecutionContext,
    NoOpExecutionContext,
)
from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result, Success

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "ResultAssertions",
]
