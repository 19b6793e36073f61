"""Centralized error codes and status mappings."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final, Optional


class ErrorCode(str, Enum):
    """Stable error identifiers surfaced to clients and logs."""

    # peer/room (ERR100x)
    ROOM_ID_REQUIRED = "ERR1001"
    PEER_ALREADY_ACTIVE = "ERR1002"
    VAD_THRESHOLD_NEGATIVE = "ERR1003"
    TEXT_REQUIRED = "ERR1004"

    # transcription (ERR200x)
    TRANSCRIPTION_FAILED = "ERR2001"
    TRANSCRIPTION_TIMEOUT = "ERR2002"
    PROVIDER_UNAVAILABLE = "ERR2003"

    # internal (ERR300x)
    STORAGE_UNAVAILABLE = "ERR3001"
    STREAM_UNEXPECTED = "ERR3002"


@dataclass(frozen=True)
class ErrorSpec:
    """Maps an error code to an HTTP status and message."""

    code: ErrorCode
    http_status: int
    message: str


ERROR_SPECS: Final[dict[ErrorCode, ErrorSpec]] = {
    ErrorCode.ROOM_ID_REQUIRED: ErrorSpec(
        ErrorCode.ROOM_ID_REQUIRED,
        400,
        "room_id is required",
    ),
    ErrorCode.PEER_ALREADY_ACTIVE: ErrorSpec(
        ErrorCode.PEER_ALREADY_ACTIVE,
        409,
        "peer_id already active",
    ),
    ErrorCode.VAD_THRESHOLD_NEGATIVE: ErrorSpec(
        ErrorCode.VAD_THRESHOLD_NEGATIVE,
        400,
        "energy_threshold must be non-negative",
    ),
    ErrorCode.TEXT_REQUIRED: ErrorSpec(
        ErrorCode.TEXT_REQUIRED,
        400,
        "Missing text parameter",
    ),
    ErrorCode.TRANSCRIPTION_FAILED: ErrorSpec(
        ErrorCode.TRANSCRIPTION_FAILED,
        502,
        "transcription provider failed",
    ),
    ErrorCode.TRANSCRIPTION_TIMEOUT: ErrorSpec(
        ErrorCode.TRANSCRIPTION_TIMEOUT,
        504,
        "transcription provider timed out",
    ),
    ErrorCode.PROVIDER_UNAVAILABLE: ErrorSpec(
        ErrorCode.PROVIDER_UNAVAILABLE,
        503,
        "transcription provider unavailable",
    ),
    ErrorCode.STORAGE_UNAVAILABLE: ErrorSpec(
        ErrorCode.STORAGE_UNAVAILABLE,
        500,
        "storage directory unavailable",
    ),
    ErrorCode.STREAM_UNEXPECTED: ErrorSpec(
        ErrorCode.STREAM_UNEXPECTED,
        500,
        "Unexpected streaming error",
    ),
}

ERROR_HTTP_STATUS_MAP: Final[dict[ErrorCode, int]] = {
    code: spec.http_status for code, spec in ERROR_SPECS.items()
}


def spec_for(code: ErrorCode) -> ErrorSpec:
    """Return the ErrorSpec for a given error code."""
    return ERROR_SPECS[code]


def http_status_for(code: ErrorCode) -> int:
    """Return the HTTP status associated with an error code."""
    return ERROR_SPECS[code].http_status


def format_error(code: ErrorCode, detail: Optional[str] = None) -> str:
    """Format an error code and optional detail into a message."""
    spec = ERROR_SPECS[code]
    message = detail if detail else spec.message
    return f"{spec.code.value} {message}"


def http_payload_for(code: ErrorCode, detail: Optional[str] = None) -> dict[str, str]:
    """Build an HTTP error payload for a given error code."""
    spec = ERROR_SPECS[code]
    message = detail if detail else spec.message
    return {"code": spec.code.value, "message": message}


class CaptionError(RuntimeError):
    """Raised for application-defined errors with status metadata."""

    def __init__(self, code: ErrorCode, detail: Optional[str] = None) -> None:
        """Create a CaptionError with formatted message and status metadata."""
        self.code = code
        self.http_status = http_status_for(code)
        self.detail = detail or ERROR_SPECS[code].message
        super().__init__(format_error(code, detail))


class TranscriptionError(CaptionError):
    """Raised by a transcription provider when a single job fails."""

    def __init__(
        self, detail: Optional[str] = None, code: ErrorCode = ErrorCode.TRANSCRIPTION_FAILED
    ) -> None:
        super().__init__(code, detail)


__all__ = [
    "ErrorCode",
    "ErrorSpec",
    "ERROR_SPECS",
    "ERROR_HTTP_STATUS_MAP",
    "CaptionError",
    "TranscriptionError",
    "format_error",
    "http_payload_for",
    "http_status_for",
    "spec_for",
]
