"""Backoff policy and a small retry decorator for auxiliary HTTP calls."""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx

RETRY_EXCEPTIONS = (httpx.TransportError, OSError, asyncio.TimeoutError)


@dataclass(slots=True)
class BackoffPolicy:
    """``delay(attempt) = base * 2**attempt + jitter`` with jitter in ``[0, max_jitter)``."""

    base: float = 1.0
    max_jitter: float = 1.0
    jitter: Callable[[], float] = field(default=random.random)

    def delay(self, attempt: int) -> float:
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        return self.base * 2**attempt + self.jitter() * self.max_jitter

    def upper_bound(self, attempt: int) -> float:
        return self.base * 2**attempt + self.max_jitter


def retry_async(func: Callable[..., Awaitable], *, attempts: int = 3, policy: BackoffPolicy | None = None):
    backoff = policy or BackoffPolicy()

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        for attempt in range(attempts):
            try:
                return await func(*args, **kwargs)
            except RETRY_EXCEPTIONS:
                if attempt == attempts - 1:
                    raise
                await asyncio.sleep(backoff.delay(attempt))
    return wrapper
