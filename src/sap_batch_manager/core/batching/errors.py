# -*- coding: utf-8 -*-
"""
Error taxonomy for batch submissions.

Only configuration and setup errors abort a run. Every error raised while
submitting a single group is converted into failure outcomes for the
records of that group and the run moves on to the next group.
"""

import traceback
from typing import Any, Optional


class BatchError(Exception):
    """Base class for all batch processing errors."""


class ConfigurationError(BatchError, ValueError):
    """Invalid run configuration or malformed input records."""


class EmptyInputError(BatchError):
    """
    Raised when there is nothing to submit.

    This is a benign outcome: the orchestrator catches it and completes the
    run with zero counts instead of reporting a failure.
    """


class TransportError(BatchError):
    """
    Group-level failure reported by a transport adapter.

    Args:
        message (str): Human readable error message.
        status_code (int, optional): HTTP status code, if any.
        code (str, optional): Backend error code (e.g. an OData message code).
        body (Any, optional): Raw response body, kept for later inspection.
        details (Any, optional): Additional details provided by the adapter.
    """

    default_code = "TRANSPORT_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        body: Any = None,
        details: Any = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.body = body
        self.details = details

    @property
    def error_code(self) -> str:
        if self.code:
            return self.code
        if self.status_code is not None:
            return f"HTTP_{self.status_code}"
        return self.default_code

    def __repr__(self):
        return (f"{type(self).__name__}(message={self.message!r}, "
                f"status_code={self.status_code!r}, code={self.code!r})")


class TransientTransportError(TransportError):
    """Network failure, 5xx or 429. Eligible for retry."""


class PermanentTransportError(TransportError):
    """4xx other than 429, rejected payload or SOAP fault. Never retried."""


class LocalPreparationError(BatchError):
    """Payload construction failed before any network call was made."""

    default_code = "LOCAL_PROCESSING_ERROR"


def format_exception_details(exc: BaseException, limit: int = 2000) -> str:
    """Return the formatted traceback of `exc`, truncated to `limit` chars."""
    text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return text[-limit:]
