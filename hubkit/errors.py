"""
Error taxonomy - the closed set of error kinds the contract layer emits.

Wire format:
{
    "error": {
        "kind": "VALIDATION_ERROR",
        "message": "Validation failed",
        "detail": [...]        # omitted when absent
    }
}

STATUS_BY_KIND is the only kind -> HTTP status mapping in the package.
"""

from enum import Enum
from typing import Any, Dict, Optional

from flask import Response, jsonify


class ErrorKind(Enum):
    """Closed enumeration of error kinds."""
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.INTERNAL_ERROR: 500,
}


class AppError(Exception):
    """
    Application error carrying a kind, a human message and optional detail.

    Handlers raise these to short-circuit with a specific outcome; the
    pipeline passes them through unchanged.
    """

    def __init__(self, kind: ErrorKind, message: str, detail: Any = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.detail = detail

    @property
    def status(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        error: Dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.detail is not None:
            error["detail"] = self.detail
        return {"error": error}

    def __repr__(self):
        return f"AppError({self.kind.value}, {self.message!r})"


class ContractDefinitionError(ValueError):
    """Raised at wiring time when an endpoint contract is declared incorrectly."""


def bad_request(message: str = "Bad request", detail: Any = None) -> AppError:
    return AppError(ErrorKind.BAD_REQUEST, message, detail)


def unauthorized(message: str = "Unauthorized") -> AppError:
    return AppError(ErrorKind.UNAUTHORIZED, message)


def forbidden(message: str = "Forbidden") -> AppError:
    return AppError(ErrorKind.FORBIDDEN, message)


def not_found(message: str = "Resource not found", detail: Any = None) -> AppError:
    return AppError(ErrorKind.NOT_FOUND, message, detail)


def conflict(message: str = "Conflict", detail: Any = None) -> AppError:
    return AppError(ErrorKind.CONFLICT, message, detail)


def validation_error(message: str = "Validation failed", detail: Any = None) -> AppError:
    return AppError(ErrorKind.VALIDATION_ERROR, message, detail)


def internal_error(message: str = "Internal server error") -> AppError:
    return AppError(ErrorKind.INTERNAL_ERROR, message)


def kind_for_status(status_code: int) -> ErrorKind:
    """
    Map an HTTP status raised by the host (404, 405, 413...) onto a kind.

    Unlisted 4xx statuses fold into BAD_REQUEST, everything else into
    INTERNAL_ERROR.
    """
    for kind, status in STATUS_BY_KIND.items():
        if status == status_code:
            return kind
    if 400 <= status_code < 500:
        return ErrorKind.BAD_REQUEST
    return ErrorKind.INTERNAL_ERROR


def error_response(
    error: AppError,
    correlation_id: Optional[str] = None,
) -> Response:
    """
    Build the standardized JSON error response.

    Args:
        error: The AppError to render
        correlation_id: Attached as the correlation header when given

    Returns:
        Flask Response
    """
    # Local import: middleware imports this module
    from .middleware.request_id import CORRELATION_ID_HEADER

    response = jsonify(error.to_dict())
    response.status_code = error.status
    if correlation_id:
        response.headers[CORRELATION_ID_HEADER] = correlation_id
    return response
