"""Retry with exponential backoff for rate-limited RPC calls."""

import time
from typing import Callable, Optional, TypeVar

from web3.exceptions import BadFunctionCallOutput, BadResponseFormat

from escrow_indexer.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("429", "too many requests", "rate limit")


def is_retryable(error: BaseException) -> bool:
    """Check whether an RPC failure should be retried.

    Rate limiting is recognized from the HTTP status of the transport error or
    from the provider's message. Malformed responses are retried as well since
    overloaded public nodes return them under load.

    Args:
        error: Exception raised by the RPC call

    Returns:
        True if the call should be attempted again
    """
    if isinstance(error, (BadResponseFormat, BadFunctionCallOutput)):
        return True

    response = getattr(error, "response", None)
    if getattr(response, "status_code", None) == 429:
        return True

    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def with_retry(
    fn: Callable[[], T],
    label: str,
    max_retries: int = 5,
    base_delay: float = 1.0,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Call ``fn`` retrying rate-limit failures.

    The delay doubles on every attempt: base_delay, 2*base_delay, 4*base_delay...
    Non-retryable errors and the error of the final attempt propagate unchanged.

    Args:
        fn: Zero-argument callable performing the RPC request
        label: Short description used in log messages
        max_retries: Maximum number of attempts
        base_delay: Delay before the first retry, in seconds
        sleep: Sleep primitive (time.sleep unless injected)

    Returns:
        Whatever ``fn`` returns
    """
    sleep = sleep or time.sleep

    for attempt in range(max_retries):
        try:
            return fn()
        except Exception as e:
            if not is_retryable(e) or attempt >= max_retries - 1:
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"Rate limited on {label}, retrying in {delay:.1f}s "
                f"(attempt {attempt + 1}/{max_retries}): {e}"
            )
            sleep(delay)

    raise RuntimeError(f"Max retries reached for {label}")
