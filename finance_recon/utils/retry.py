"""Retry utilities with exponential backoff"""
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential
import httpx

from finance_recon.exceptions import RateLimitedError


def api_retrying(attempts: int, min_wait: float, max_wait: float) -> AsyncRetrying:
    """Retry controller for FEC API calls.

    Only transport failures and 429 responses are retried; every other
    outcome is returned to the caller on the first attempt.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max(attempts, 1)),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type((httpx.TransportError, RateLimitedError)),
        reraise=True,
    )
