"""
retry.py — Bounded retry executor for calls to external services.

The executor does not classify failures: every exception is retried until the
attempt budget is spent, then the last exception is re-raised. Callers must
make sure the wrapped operation is safe to repeat.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

log = logging.getLogger(__name__)


async def retry_with_backoff(
        operation: Callable[[], Awaitable[T]],
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Runs `operation` up to `max_attempts` times with a linearly growing delay.

    After the n-th failed attempt the executor waits `base_delay * n` seconds,
    so three attempts wait `base_delay * 1 + base_delay * 2` in total.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt.
        max_attempts (int): Attempt budget, at least 1.
        base_delay (float): Delay unit in seconds.
        sleep: Coroutine used for waiting (injectable for tests).

    Returns:
        The result of the first successful attempt.

    Raises:
        ValueError: If `max_attempts` is smaller than 1.
        Exception: The exception of the final attempt.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= max_attempts:
                log.error(f"Tentativa {attempt}/{max_attempts} falhou, desistindo: {e}")
                raise
            delay = base_delay * attempt
            log.warning(f"Tentativa {attempt}/{max_attempts} falhou ({e}). Nova tentativa em {delay:.1f}s.")
            await sleep(delay)
            attempt += 1
