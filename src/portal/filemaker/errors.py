"""FileMaker error taxonomy and code classification.

Every failure that crosses the bridge boundary is a ``FileMakerError`` tagged
with an ``ErrorCategory`` from the point of classification onward, so callers
branch on ``err.category`` instead of inspecting messages.

FileMaker Data API codes used here:
    212  invalid user account or password
    952  invalid or expired Data API token
    101  record is missing
    105  layout is missing
    401  no records match the request
    301  record is in use by another user
    306  record modification ID does not match
    5xx  field validation failures
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Classification of a bridge failure."""

    AUTH = "auth"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    CIRCUIT_OPEN = "circuit_open"
    CONFIGURATION_MISSING = "configuration_missing"
    UNKNOWN = "unknown"


AUTH_CODES = frozenset({"212", "952"})
NOT_FOUND_CODES = frozenset({"101", "105", "401"})
CONFLICT_CODES = frozenset({"301", "306"})
VALIDATION_CODE_RANGE = range(500, 600)


def classify_error_code(code: str | int | None) -> ErrorCategory:
    """Map a FileMaker error code to an ErrorCategory."""
    if code is None:
        return ErrorCategory.UNKNOWN

    code_str = str(code).strip()
    if code_str in AUTH_CODES:
        return ErrorCategory.AUTH
    if code_str in NOT_FOUND_CODES:
        return ErrorCategory.NOT_FOUND
    if code_str in CONFLICT_CODES:
        return ErrorCategory.CONFLICT
    if code_str.isdigit() and int(code_str) in VALIDATION_CODE_RANGE:
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


def classify_http_status(status_code: int) -> ErrorCategory:
    """Fallback classification when a response carries no FileMaker message."""
    if status_code == 401:
        return ErrorCategory.AUTH
    if status_code == 404:
        return ErrorCategory.NOT_FOUND
    return ErrorCategory.UNKNOWN


class FileMakerError(Exception):
    """Base exception for all FileMaker bridge errors.

    Attributes:
        message: Human-readable error description (FileMaker's own text when available).
        category: Error classification used for retry and fallback decisions.
        code: FileMaker error code, if the failure came from the Data API.
        http_status: HTTP status of the failed response, if any.
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        code: str | None = None,
        http_status: int | None = None,
    ):
        self.message = message
        if category is not None:
            self.category = category
        self.code = code
        self.http_status = http_status
        super().__init__(message)

    def __str__(self) -> str:
        if self.code:
            return f"FileMaker error {self.code}: {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
        }


class ConfigurationMissing(FileMakerError):
    """One or more FM_* credentials are not set."""

    category = ErrorCategory.CONFIGURATION_MISSING

    def __init__(self, message: str = "FileMaker not configured -- missing FM_* settings"):
        super().__init__(message)


class CircuitOpenError(FileMakerError):
    """The circuit breaker is open; no network call was attempted."""

    category = ErrorCategory.CIRCUIT_OPEN

    def __init__(self, message: str = "FileMaker circuit breaker is open -- FM appears to be down"):
        super().__init__(message)


def error_from_response(payload: Any, http_status: int) -> FileMakerError | None:
    """Build a classified error from a Data API response body.

    Returns None when the body reports code "0" (success) and the HTTP
    status is not an error.
    """
    messages = payload.get("messages") if isinstance(payload, dict) else None
    if messages:
        first = messages[0] or {}
        code = str(first.get("code", "")).strip()
        if code and code != "0":
            return FileMakerError(
                first.get("message") or "Unknown FileMaker error",
                category=classify_error_code(code),
                code=code,
                http_status=http_status,
            )
        if code == "0":
            return None

    if http_status >= 400:
        return FileMakerError(
            f"FileMaker request failed with HTTP {http_status}",
            category=classify_http_status(http_status),
            http_status=http_status,
        )
    return None
