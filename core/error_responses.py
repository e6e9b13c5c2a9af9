"""
ERROR_RESPONSES.PY - Standardized Error Responses

Every API error uses one envelope:
    {
        "status": "error",
        "error": "Fewer than 3 legs clear the probability floor",
        "errors": [{"code": "INSUFFICIENT_QUALITY", "message": "...", "field": null}],
        "request_id": "req-abc123def456",
        "timestamp": "2026-10-19T10:00:00-04:00"
    }

Domain failures are raised as SlipEngineError (or a subclass) carrying an
ErrorCode; the FastAPI exception handler in main.py renders them with
make_error() and the code's HTTP status.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ErrorDetail:
    """Single error detail."""
    code: str
    message: str
    field: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"code": self.code, "message": self.message}
        if self.field is not None:
            result["field"] = self.field
        return result


@dataclass
class ErrorResponse:
    """Standardized error response."""
    status: str = "error"
    error: Optional[str] = None
    errors: List[ErrorDetail] = field(default_factory=list)
    request_id: Optional[str] = None
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"status": self.status}
        if self.error is not None:
            result["error"] = self.error
        if self.errors:
            result["errors"] = [e.to_dict() for e in self.errors]
        if self.request_id is not None:
            result["request_id"] = self.request_id
        if self.timestamp is not None:
            result["timestamp"] = self.timestamp
        return result


class ErrorCode:
    """Standard error codes for consistent API responses."""

    # Validation
    INVALID_PARAMETER = "INVALID_PARAMETER"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Resource
    NOT_FOUND = "NOT_FOUND"

    # Selection outcome (not an exception: reported inside a 200 response)
    INSUFFICIENT_QUALITY = "INSUFFICIENT_QUALITY"

    # Dependencies
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    CALIBRATION_FAILED = "CALIBRATION_FAILED"

    # Internal
    INTERNAL_ERROR = "INTERNAL_ERROR"


HTTP_STATUS_BY_CODE = {
    ErrorCode.INVALID_PARAMETER: 400,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INSUFFICIENT_QUALITY: 200,
    ErrorCode.UPSTREAM_UNAVAILABLE: 502,
    ErrorCode.PERSISTENCE_FAILED: 503,
    ErrorCode.CALIBRATION_FAILED: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}


class SlipEngineError(Exception):
    """Base for domain errors surfaced through the API."""

    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, field: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        if code is not None:
            self.code = code

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE.get(self.code, 500)


class InvalidParameterError(SlipEngineError):
    code = ErrorCode.INVALID_PARAMETER


class PersistenceError(SlipEngineError):
    code = ErrorCode.PERSISTENCE_FAILED


def make_error(
    code: str,
    message: str,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
    include_timestamp: bool = True,
) -> Dict[str, Any]:
    """
    Create standardized error response dict.

    Example:
        >>> make_error(ErrorCode.INVALID_PARAMETER, "leg_count must be >= 2", field="leg_count")
    """
    from core.time_et import format_as_of_et

    response = ErrorResponse(
        error=message,
        errors=[ErrorDetail(code=code, message=message, field=field)],
        request_id=request_id,
        timestamp=format_as_of_et() if include_timestamp else None,
    )
    return response.to_dict()


__all__ = [
    'ErrorDetail',
    'ErrorResponse',
    'ErrorCode',
    'HTTP_STATUS_BY_CODE',
    'SlipEngineError',
    'InvalidParameterError',
    'PersistenceError',
    'make_error',
]
