"""
Timeout and retry combinators for the asynchronous pipeline stages.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from mangaflow.core.errors import StageFailedError, StageTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_timeout(
    coro_factory: Callable[[], Awaitable[T]],
    timeout_s: float,
    stage: str,
) -> T:
    """Await one attempt of a stage; raises ``StageTimeoutError`` past ``timeout_s``."""
    try:
        return await asyncio.wait_for(coro_factory(), timeout=timeout_s)
    except asyncio.TimeoutError as e:
        raise StageTimeoutError(stage, timeout_s) from e


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    delay_s: float = 2.0,
    backoff: bool = True,
    stage: str = "stage",
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Run ``coro_factory`` until it succeeds or ``max_attempts`` is reached.

    The wait before attempt ``n + 1`` is ``delay_s * 2 ** (n - 1)`` with
    backoff, ``delay_s`` without. Exceptions outside ``retry_on`` propagate
    immediately.

    Raises:
        StageFailedError: Every attempt failed; wraps the last error.
    """
    attempts = max(1, max_attempts)
    last_error: BaseException = RuntimeError("no attempt made")
    for attempt in range(1, attempts + 1):
        try:
            return await coro_factory()
        except retry_on as e:
            last_error = e
            logger.warning(f"[{stage}] attempt {attempt}/{attempts} failed: {e}")
            if attempt < attempts:
                wait = delay_s * (2 ** (attempt - 1)) if backoff else delay_s
                await asyncio.sleep(wait)

    raise StageFailedError(stage, attempts, last_error) from last_error
