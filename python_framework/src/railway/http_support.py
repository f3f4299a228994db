"""
HTTP integration — ErrorCode→HTTP status mapping and FastAPI response builders.

User errors carry their message to the client unchanged. Internal errors are
reduced to an opaque message; the full failure belongs in server-side logs.

    return build_fastapi_response(result.map(lambda issued: issued.to_dict()))
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, TypeVar

from fastapi.responses import JSONResponse

from railway.failure import ErrorCode, FailureDescription
from railway.result import Result

T = TypeVar("T")

INTERNAL_ERROR_MESSAGE = "internal error; see server logs"


class HttpStatusMapper:
    """Maps ErrorCode enum values to HTTP status codes."""

    _CODE_TO_STATUS: dict[ErrorCode, int] = {
        ErrorCode.VALIDATION_ERROR: 400,
        ErrorCode.AUTHORIZATION_ERROR: 403,
        ErrorCode.NOT_FOUND: 404,
        ErrorCode.TECHNICAL_ERROR: 500,
        ErrorCode.DATABASE_ERROR: 500,
        ErrorCode.CONFIGURATION_ERROR: 500,
        ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
    }

    @classmethod
    def map_error_code(cls, code: ErrorCode) -> int:
        return cls._CODE_TO_STATUS.get(code, 500)


@dataclass(frozen=True, slots=True)
class ErrorResponse:
    """
    Standardized error response body.

        {"error_code": "NOT_FOUND", "message": "unknown role: web", "timestamp": "..."}
    """

    error_code: str
    message: str
    timestamp: str

    @staticmethod
    def from_failure(failure: FailureDescription) -> ErrorResponse:
        message = failure.message if failure.code.is_user_error else INTERNAL_ERROR_MESSAGE
        return ErrorResponse(
            error_code=failure.code.value,
            message=message,
            timestamp=failure.timestamp.isoformat(),
        )

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


def build_response(result: Result[T], success_status: int = 200) -> tuple[Any, int]:
    """Framework-agnostic (body, status) pair for a Result."""
    return result.either(
        on_success=lambda value: (value, success_status),
        on_failure=lambda error: (
            ErrorResponse.from_failure(error).to_dict(),
            HttpStatusMapper.map_error_code(error.code),
        ),
    )


def build_fastapi_response(result: Result[T], success_status: int = 200) -> JSONResponse:
    body, status = build_response(result, success_status)
    return JSONResponse(content=body, status_code=status)
