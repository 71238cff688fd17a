"""
RetryExecutor - bounded exponential backoff around fallible external calls

The executor itself knows nothing about the operation; a classifier decides
whether an error is fatal, retryable, or a parse failure of the response.
"""
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

from storage.errors import ValidationError
from .errors import GenerationParseError, RetriesExhaustedError, TransientExternalError

logger = logging.getLogger("retry-executor")

T = TypeVar("T")

# HTTP statuses worth retrying: rate limited, server error, service unavailable
RETRYABLE_STATUS_CODES = frozenset({429, 500, 503})


class ErrorClass(Enum):
    FATAL = "fatal"
    RETRYABLE = "retryable"
    PARSE_FAILURE = "parse_failure"


def extract_status_code(error: BaseException) -> Optional[int]:
    """Pull an HTTP status code off an exception, if it carries one"""
    for attr in ("status_code", "status", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def classify_api_error(error: BaseException) -> ErrorClass:
    """
    Default classifier for generation and dispatch errors

    - ValidationError: fatal
    - GenerationParseError: parse failure
    - status 429/500/503: retryable; any other status: fatal
    - TransientExternalError without a status: retryable
    - anything else: fatal
    """
    if isinstance(error, ValidationError):
        return ErrorClass.FATAL
    if isinstance(error, GenerationParseError):
        return ErrorClass.PARSE_FAILURE

    status_code = extract_status_code(error)
    if status_code is not None:
        return ErrorClass.RETRYABLE if status_code in RETRYABLE_STATUS_CODES else ErrorClass.FATAL

    if isinstance(error, TransientExternalError):
        return ErrorClass.RETRYABLE
    return ErrorClass.FATAL


class RetryExecutor:
    """Runs an operation with up to ``max_attempts`` tries and 2**n second backoff"""

    def __init__(self, max_attempts: Optional[int] = None, base_delay_ms: Optional[int] = None,
                 sleep: Callable[[float], Any] = time.sleep):
        if max_attempts is None or base_delay_ms is None:
            from config.settings import RETRY_MAX_ATTEMPTS, RETRY_BASE_DELAY_MS
            max_attempts = RETRY_MAX_ATTEMPTS if max_attempts is None else max_attempts
            base_delay_ms = RETRY_BASE_DELAY_MS if base_delay_ms is None else base_delay_ms
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.sleep = sleep

    def run(self, operation: Callable[[], T],
            classify: Callable[[BaseException], ErrorClass] = classify_api_error,
            max_attempts: Optional[int] = None, description: str = "operation") -> T:
        """
        Run ``operation`` until it succeeds or the attempt budget is spent

        Args:
            operation: Zero-argument callable
            classify: Maps an exception to an ErrorClass
            max_attempts: Override of the executor's budget
            description: Used in log messages

        Returns:
            Whatever ``operation`` returns

        Raises:
            The original error when it is fatal or a repeated parse failure,
            RetriesExhaustedError when the budget runs out.
        """
        budget = self.max_attempts if max_attempts is None else max_attempts
        if budget < 1:
            raise ValidationError(f"max_attempts must be at least 1, got {budget}")

        parse_retry_used = False
        attempt = 0
        last_error: Optional[BaseException] = None

        while attempt < budget:
            try:
                return operation()
            except Exception as e:
                last_error = e
                error_class = classify(e)

                if error_class is ErrorClass.FATAL:
                    logger.error(f"{description} failed with a non-retryable error: {e}")
                    raise

                if error_class is ErrorClass.PARSE_FAILURE:
                    if parse_retry_used:
                        logger.error(f"{description} returned unparseable output twice: {e}")
                        raise
                    parse_retry_used = True
                    budget += 1
                    delay_ms = self.base_delay_ms
                else:
                    delay_ms = (2 ** attempt) * self.base_delay_ms

                if attempt + 1 >= budget:
                    break

                logger.warning(
                    f"{description} attempt {attempt + 1}/{budget} failed ({error_class.value}): {e}; "
                    f"retrying in {delay_ms}ms"
                )
                self.sleep(delay_ms / 1000)
                attempt += 1

        logger.error(f"{description} failed after {attempt + 1} attempts: {last_error}")
        raise RetriesExhaustedError(
            f"{description} failed after {attempt + 1} attempts: {last_error}",
            last_error=last_error,
            attempts=attempt + 1,
        ) from last_error
