"""Bounded retries for transient failures of the store and blob collaborators."""

import asyncio
import logging

from .errors import Unavailable

logger = logging.getLogger(__name__)


async def retry_unavailable(label: str, operation, *args, max_retries: int, base_seconds: float):
    """Run operation, retrying Unavailable with exponential backoff.

    Waits base_seconds * 2**attempt between attempts and re-raises after
    max_retries retries. Any other error surfaces immediately.
    """
    for attempt in range(max_retries + 1):
        try:
            return await operation(*args)
        except Unavailable as e:
            if attempt >= max_retries:
                logger.error(f"{label} failed after {attempt + 1} attempts: {e}")
                raise
            wait_time = base_seconds * 2 ** attempt
            logger.warning(f"{label} unavailable (attempt {attempt + 1}), retrying in {wait_time:.2f}s: {e}")
            await asyncio.sleep(wait_time)
