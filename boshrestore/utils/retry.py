from __future__ import annotations

import asyncio
import random


def compute_backoff(
    attempt: int,
    base: float = 1.0,
    factor: float = 1.5,
    cap: float | None = None,
    jitter: float = 0.0,
) -> float:
    """Compute capped exponential backoff with optional jitter."""
    delay = base * (factor ** attempt)
    if cap is not None:
        delay = min(delay, cap)
    if jitter:
        delay += random.uniform(0, jitter)
    return delay


async def schedule_retry(attempt: int, **kwargs) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, **kwargs)
    await asyncio.sleep(delay)
