"""
Error taxonomy shared by every layer, plus the JSON error envelope.

Each error carries a stable `error_type` string and the HTTP status it maps to,
so the API layer never has to guess.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class AppError(Exception):
    error_type = "internal_error"
    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})
        self.timestamp = utc_timestamp()

    def to_dict(self) -> Dict[str, Any]:
        return format_error_response(self)


class ValidationError(AppError):
    """Bad, missing or oversized input. Retrying the same request will not help."""
    error_type = "validation_error"
    status_code = 400


class PayloadTooLargeError(ValidationError):
    error_type = "payload_too_large"
    status_code = 413


class InvalidImageError(ValidationError):
    """Bytes that cannot be decoded or resized into an image."""
    error_type = "invalid_image"
    status_code = 400


class ProcessingError(AppError):
    """A pipeline stage failed at runtime. The caller may retry."""
    error_type = "processing_error"
    status_code = 422


class NotFoundError(AppError):
    error_type = "not_found"
    status_code = 404


class NetworkError(AppError):
    """Broker or downstream service unreachable."""
    error_type = "network_error"
    status_code = 503


class JobTimeoutError(AppError):
    error_type = "timeout_error"
    status_code = 408


ERROR_TYPES = {
    cls.error_type: cls
    for cls in (AppError, ValidationError, PayloadTooLargeError, InvalidImageError,
                ProcessingError, NotFoundError, NetworkError, JobTimeoutError)
}


def error_from_dict(payload: Dict[str, Any]) -> AppError:
    """Rebuild an error that was stored as an envelope (e.g. on a failed job)."""
    cls = ERROR_TYPES.get(payload.get("error_type"), AppError)
    error = cls(payload.get("message", "Unknown error"), payload.get("details"))
    if payload.get("timestamp"):
        error.timestamp = payload["timestamp"]
    return error


def format_error_response(error: BaseException) -> Dict[str, Any]:
    """
    Build the error envelope returned to clients.
    Unknown exceptions are reported as `internal_error` without leaking their text.
    """
    if isinstance(error, AppError):
        response: Dict[str, Any] = {
            "status": "error",
            "message": error.message,
            "error_type": error.error_type,
            "timestamp": error.timestamp,
        }
        if error.context:
            response["details"] = error.context
        return response

    return {
        "status": "error",
        "message": "Internal server error",
        "error_type": AppError.error_type,
        "timestamp": utc_timestamp(),
    }
