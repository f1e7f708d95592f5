"""Error taxonomy for the FluxEdit request pipeline.

Every failure in the pipeline is expressed as a single :class:`FluxEditError`
tagged with an :class:`ErrorCode`.  The code decides whether the failure is
retried and which sentence the user sees; the type of the exception never
does.

Codes
-----
========================  =========  ======================================
Code                      Retryable  Typical source
========================  =========  ======================================
``NETWORK_ERROR``         yes        transport failure, connection refused
``TIMEOUT_ERROR``         yes        request exceeded the timeout ceiling
``PROCESSING_ERROR``      yes*       upstream rejected or failed the edit
``VALIDATION_ERROR``      no         bad file, prompt or parameters
``CONFIG_ERROR``          no         missing credential or environment
``UNKNOWN_ERROR``         no         anything unclassified
========================  =========  ======================================

``*`` unless constructed with ``retryable=False``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_RETRY_DELAY_MS = 1000
MAX_RETRY_DELAY_MS = 4000


class ErrorCode(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class FluxEditError(Exception):
    """A classified pipeline failure.

    Args:
        message: Human-readable description of the failure.
        code: Taxonomy code.
        retryable: Whether the request may be re-attempted.
        details: Optional structured payload (e.g. the offending field).
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable
        self.details = details

    def __repr__(self) -> str:
        return (
            f"FluxEditError(code={self.code.value}, retryable={self.retryable}, "
            f"message={self.message!r})"
        )

    @classmethod
    def network(cls, message: str = "Network connection failed") -> FluxEditError:
        return cls(message, ErrorCode.NETWORK_ERROR, retryable=True)

    @classmethod
    def timeout(cls, message: str = "Request timed out") -> FluxEditError:
        return cls(message, ErrorCode.TIMEOUT_ERROR, retryable=True)

    @classmethod
    def validation(cls, message: str, field: str | None = None) -> FluxEditError:
        return cls(message, ErrorCode.VALIDATION_ERROR, retryable=False, details={"field": field})

    @classmethod
    def processing(cls, message: str, retryable: bool = True) -> FluxEditError:
        return cls(message, ErrorCode.PROCESSING_ERROR, retryable=retryable)

    @classmethod
    def configuration(cls, message: str = "Service configuration error") -> FluxEditError:
        return cls(message, ErrorCode.CONFIG_ERROR, retryable=False)

    @classmethod
    def unknown(cls, message: str = "An unknown error occurred") -> FluxEditError:
        return cls(message, ErrorCode.UNKNOWN_ERROR, retryable=False)


# Keyword families, checked in order against the lowercased message.
_KEYWORD_FAMILIES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("fetch", "network", "connection"), "network"),
    (("timeout", "aborted"), "timeout"),
    (("fal_key", "environment", "config"), "configuration"),
    (("validation", "invalid", "required"), "validation"),
    (("processing", "api", "server"), "processing"),
)

FRIENDLY_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.NETWORK_ERROR: (
        "Connection failed. Please check your internet connection and try again."
    ),
    ErrorCode.TIMEOUT_ERROR: (
        "The request took too long. Please try again with a smaller image or simpler prompt."
    ),
    ErrorCode.CONFIG_ERROR: "Service configuration error. Please contact support if this persists.",
    ErrorCode.PROCESSING_ERROR: (
        "Image processing failed. Please try again or use different parameters."
    ),
}

DEFAULT_FRIENDLY_MESSAGE = "Something went wrong. Please try again."


def classify_error(error: object) -> FluxEditError:
    """Map any raised value onto the taxonomy.

    Args:
        error: The caught exception (or any other raised value).

    Returns:
        The error itself when already classified, otherwise a new
        :class:`FluxEditError` chosen by keyword family.
    """
    if isinstance(error, FluxEditError):
        return error

    if isinstance(error, BaseException):
        text = str(error)
        lowered = text.lower()
        for keywords, family in _KEYWORD_FAMILIES:
            if any(keyword in lowered for keyword in keywords):
                if family == "validation":
                    return FluxEditError.validation(text)
                return getattr(FluxEditError, family)(text)
        return FluxEditError.unknown(text)

    return FluxEditError.unknown()


def user_friendly_message(error: FluxEditError) -> str:
    """Return the fixed sentence shown to the user for ``error``.

    Validation messages are already written for users and pass through.
    """
    if error.code is ErrorCode.VALIDATION_ERROR:
        return error.message
    if error.code in FRIENDLY_MESSAGES:
        return FRIENDLY_MESSAGES[error.code]
    return error.message or DEFAULT_FRIENDLY_MESSAGE


def should_retry(error: FluxEditError, attempt: int, max_retries: int = MAX_RETRIES) -> bool:
    return error.retryable and attempt < max_retries


def retry_delay(attempt: int) -> int:
    """Exponential backoff in milliseconds: 1000, 2000, 4000, then capped."""
    return min(BASE_RETRY_DELAY_MS * 2**attempt, MAX_RETRY_DELAY_MS)


def report_error(error: FluxEditError, context: dict[str, Any] | None = None) -> None:
    """Log a classified error with its context for later debugging."""
    logger.error(
        "FluxEdit pipeline error: %s",
        error.message,
        extra={
            "error_code": error.code.value,
            "retryable": error.retryable,
            "details": error.details,
            "context": context or {},
            "reported_at": datetime.now(timezone.utc).isoformat(),
        },
    )
