# -*- coding: utf-8 -*-
"""
Retry policy for group submissions.

The policy only classifies errors and computes delays. The actual retry
loop is run by tenacity, built from the policy with `RetryPolicy.retrying`.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt

from .errors import (ConfigurationError, LocalPreparationError,
                     PermanentTransportError, TransientTransportError,
                     TransportError)

DEFAULT_MAX_RETRIES = 3        # Maximum number of retries for a failed group
DEFAULT_RETRY_DELAY_MS = 2000  # Delay before retrying a group

TRANSIENT_STATUS_CODES = frozenset({429, 500, 503})
TRANSIENT_MESSAGE_MARKERS = ("busy", "unavailable", "timeout", "timed out")


class RetryPolicy:
    """
    Decide whether a failed group submission is retried, and when.

    Args:
        max_retries (int): Retries allowed after the first attempt.
        retry_delay_ms (int): Delay before the first retry.
        backoff_factor (float): Multiplier applied to the delay on every
            further retry. 1.0 keeps the delay fixed.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        backoff_factor: float = 1.0
    ):
        if max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0.")
        if retry_delay_ms < 0:
            raise ConfigurationError("retry_delay_ms must be >= 0.")
        if backoff_factor < 1:
            raise ConfigurationError("backoff_factor must be >= 1.")
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.backoff_factor = backoff_factor

    def is_transient(self, error: BaseException) -> bool:
        """Classify `error` as transient (retryable) or not."""
        if isinstance(error, (PermanentTransportError, LocalPreparationError)):
            return False
        if isinstance(error, TransientTransportError):
            return True
        if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
            return True
        if isinstance(error, TransportError):
            status = error.status_code
            if status in TRANSIENT_STATUS_CODES:
                return True
            if status is not None and 400 <= status < 500:
                return False
            message = (error.message or "").lower()
            return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)
        return False

    def should_retry(self, error: BaseException, attempt_number: int) -> bool:
        """
        Whether to retry after `attempt_number` attempts failed with `error`.
        Attempts are counted from 1.
        """
        return attempt_number <= self.max_retries and self.is_transient(error)

    def backoff_ms(self, attempt_number: int) -> int:
        """Delay to wait before the retry that follows attempt `attempt_number`."""
        exponent = max(0, attempt_number - 1)
        return int(self.retry_delay_ms * (self.backoff_factor ** exponent))

    def retrying(
        self,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        before_sleep: Optional[Callable[[RetryCallState], None]] = None,
        is_cancelled: Callable[[], bool] = lambda: False
    ) -> AsyncRetrying:
        """
        Build a tenacity AsyncRetrying that follows this policy.

        Args:
            sleep: Awaitable sleep used for the backoff delay.
            before_sleep: Called with the retry state before each backoff.
            is_cancelled: When it returns True, no further retry is attempted.
        """
        def _retry(retry_state: RetryCallState) -> bool:
            if not retry_state.outcome.failed or is_cancelled():
                return False
            return self.should_retry(retry_state.outcome.exception(), retry_state.attempt_number)

        def _wait(retry_state: RetryCallState) -> float:
            return self.backoff_ms(retry_state.attempt_number) / 1000

        return AsyncRetrying(
            sleep=sleep,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=_wait,
            retry=_retry,
            before_sleep=before_sleep or log_retry,
            reraise=True
        )

    def __repr__(self):
        return (f"RetryPolicy(max_retries={self.max_retries}, "
                f"retry_delay_ms={self.retry_delay_ms}, backoff_factor={self.backoff_factor})")


def log_retry(retry_state: RetryCallState) -> None:
    """Default before_sleep hook."""
    logging.warning(
        "Attempt %d failed with %r. Retrying in %.1f seconds...",
        retry_state.attempt_number,
        retry_state.outcome.exception(),
        retry_state.next_action.sleep if retry_state.next_action else 0,
    )
