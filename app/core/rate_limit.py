"""
In-memory sliding-window rate limiting.

STK pushes are limited per user and per target phone, since each accepted
request rings the payer's handset. Buckets live in process memory, so the
limits are per worker.
"""
import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional
from fastapi import Request, HTTPException, status

logger = logging.getLogger(__name__)

# {bucket: [request timestamps]}
rate_limit_store: Dict[str, List[float]] = defaultdict(list)

# Buckets idle longer than this are dropped; must exceed every configured window
BUCKET_IDLE_SECONDS = 3600
PRUNE_INTERVAL_SECONDS = 300

_last_prune = 0.0


def get_client_ip(request: Request) -> str:
    """Extract client IP address from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # First hop is the original client
        return forwarded.split(",")[0].strip()

    cf_ip = request.headers.get("CF-Connecting-IP")
    if cf_ip:
        return cf_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def prune_rate_limit_store(now: Optional[float] = None, idle_seconds: int = BUCKET_IDLE_SECONDS) -> int:
    """Drop buckets with no hit in the last ``idle_seconds``; returns how many were removed."""
    now = time.time() if now is None else now
    cutoff = now - idle_seconds
    stale = [bucket for bucket, hits in rate_limit_store.items() if not hits or hits[-1] <= cutoff]
    for bucket in stale:
        del rate_limit_store[bucket]
    return len(stale)


def _consume(bucket: str, max_requests: int, window_seconds: int, now: float) -> bool:
    """Record a hit in ``bucket``; False when the window is already full."""
    global _last_prune
    if now - _last_prune >= PRUNE_INTERVAL_SECONDS:
        _last_prune = now
        prune_rate_limit_store(now)

    cutoff = now - window_seconds
    hits = [ts for ts in rate_limit_store[bucket] if ts > cutoff]
    if len(hits) >= max_requests:
        rate_limit_store[bucket] = hits
        return False
    hits.append(now)
    rate_limit_store[bucket] = hits
    return True


def _too_many(max_requests: int, window_seconds: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=f"Rate limit exceeded. Maximum {max_requests} requests per {window_seconds} seconds."
    )


def check_rate_limit(
    request: Request,
    max_requests: int = 10,
    window_seconds: int = 60,
    key: Optional[str] = None,
) -> None:
    """
    Check if a caller has exceeded a rate limit.

    Args:
        request: FastAPI request object
        max_requests: Maximum number of requests allowed
        window_seconds: Time window in seconds
        key: Bucket key (defaults to the client IP)

    Raises:
        HTTPException: 429 if rate limit exceeded
    """
    bucket = key or f"ip:{get_client_ip(request)}"
    if not _consume(bucket, max_requests, window_seconds, time.time()):
        logger.warning(f"Rate limit exceeded for {bucket} ({max_requests} requests in {window_seconds}s)")
        raise _too_many(max_requests, window_seconds)


def check_stk_push_rate_limit(
    user_id: str,
    phone: Optional[str],
    max_requests: int,
    window_seconds: int,
) -> None:
    """
    Limit STK pushes per initiating user and per target handset.

    The phone bucket uses the raw digits so ``07..`` and ``+2547..`` forms
    of one number land in the same bucket.

    Raises:
        HTTPException: 429 if either bucket is full
    """
    now = time.time()
    buckets = [f"stk-push:user:{user_id}"]
    digits = "".join(ch for ch in (phone or "") if ch.isdigit())
    if digits:
        buckets.append(f"stk-push:phone:{digits[-9:]}")

    for bucket in buckets:
        if not _consume(bucket, max_requests, window_seconds, now):
            logger.warning(f"STK push rate limit exceeded for {bucket}")
            raise _too_many(max_requests, window_seconds)
