from __future__ import annotations

import logging
import math
import time
from collections import defaultdict, deque
from typing import Awaitable, Callable, DefaultDict, Deque, Hashable, Iterable

from fastapi import HTTPException, Request, status

from app.core.redis_client import get_redis

WindowBucket = Deque[float]

logger = logging.getLogger(__name__)


def _too_many_requests(retry_after_seconds: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Too many requests",
        headers={"Retry-After": str(max(1, retry_after_seconds)), "Access-Control-Allow-Origin": "*"},
    )


def _enforce_limit(bucket: WindowBucket, limit: int, window_seconds: int, now: float) -> None:
    while bucket and now - bucket[0] > window_seconds:
        bucket.popleft()
    if len(bucket) >= limit:
        raise _too_many_requests(int(math.ceil(bucket[0] + window_seconds - now)) if bucket else 1)
    bucket.append(now)


async def _enforce_limit_redis(*, key: Hashable, identifier: Hashable, limit: int, window_seconds: int, now: float) -> bool:
    """Fixed-window counter in Redis; returns False when Redis is unavailable."""
    client = get_redis()
    if client is None:
        return False
    if limit <= 0:
        return True
    window_seconds = max(1, int(window_seconds))
    now_int = int(now)
    redis_key = f"rate_limit:{key}:{identifier}:{now_int // window_seconds}"
    try:
        count = await client.incr(redis_key)
        if count == 1:
            await client.expire(redis_key, window_seconds)
    except Exception as exc:
        logger.warning("redis_rate_limit_failed", extra={"error": str(exc)})
        return False
    if int(count) > int(limit):
        raise _too_many_requests(window_seconds - (now_int % window_seconds))
    return True


def client_identifier(request: Request) -> str:
    """First hop of X-Forwarded-For when behind the platform proxy, else the socket peer."""
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    return request.client.host if request.client else "anon"


def per_identifier_limiter(
    identifier_fn: Callable[[Request], Hashable],
    limit: int,
    window_seconds: int,
    key: Hashable,
) -> Callable[[Request], Awaitable[None]]:
    """
    Rate limiter that uses a dynamic identifier (e.g., client IP or shop domain).

    Uses Redis when REDIS_URL is configured so limits hold across workers, and falls
    back to per-process in-memory buckets otherwise.

    Args:
        identifier_fn: function that maps the request to an identifier.
        limit: max requests allowed in the window.
        window_seconds: rolling window length in seconds.
        key: namespace for the buckets (e.g., "analytics:events").
    """
    buckets: DefaultDict[Hashable, WindowBucket] = defaultdict(deque)

    async def dependency(request: Request) -> None:
        ident = identifier_fn(request)
        now = time.time()
        enforced = await _enforce_limit_redis(key=key, identifier=ident, limit=limit, window_seconds=window_seconds, now=now)
        if not enforced:
            _enforce_limit(buckets[ident], limit, window_seconds, now)

    dependency.buckets = buckets  # type: ignore[attr-defined]
    return dependency


def reset_buckets(buckets: Iterable[DefaultDict[Hashable, WindowBucket]]) -> None:
    """Helper for tests to clear limiter state."""
    for bucket in buckets:
        bucket.clear()
