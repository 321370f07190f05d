"""Token bucket rate limiter backed by Redis."""

import time

import redis.asyncio as aioredis
from fastapi import Depends, HTTPException, Request, Response

from servicehub.config import settings
from servicehub.redis import get_redis
from servicehub.utils.crypto import hash_token

# Lua script for atomic token bucket check-and-consume
_TOKEN_BUCKET_SCRIPT = """
local key = KEYS[1]
local capacity = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

local bucket = redis.call('HMGET', key, 'tokens', 'last_refill')
local tokens = tonumber(bucket[1])
local last_refill = tonumber(bucket[2])

if tokens == nil then
    tokens = capacity
    last_refill = now
end

local elapsed = now - last_refill
local new_tokens = math.min(capacity, tokens + elapsed * (refill_rate / 60.0))
local ttl = math.ceil(capacity * 60 / refill_rate) + 60

if new_tokens >= 1 then
    new_tokens = new_tokens - 1
    redis.call('HSET', key, 'tokens', new_tokens, 'last_refill', now)
    redis.call('EXPIRE', key, ttl)
    return {1, math.floor(new_tokens), 0}
else
    local retry_after = math.ceil((1 - new_tokens) * 60 / refill_rate)
    redis.call('HSET', key, 'tokens', new_tokens, 'last_refill', now)
    redis.call('EXPIRE', key, ttl)
    return {0, 0, retry_after}
end
"""


def get_rate_config(method: str, path: str) -> tuple[int, int, str]:
    """Return (capacity, refill_per_min, category) based on endpoint."""
    path = path.rstrip("/")
    if method == "POST" and path == "/users":
        return (
            settings.rate_limit_registration_capacity,
            settings.rate_limit_registration_refill_per_min,
            "registration",
        )
    if method == "POST" and path.endswith("/categorizations"):
        return (
            settings.rate_limit_categorization_capacity,
            settings.rate_limit_categorization_refill_per_min,
            "categorization",
        )
    if method == "POST" and (path.endswith("/bids") or path.startswith("/bids/")):
        return (
            settings.rate_limit_bidding_capacity,
            settings.rate_limit_bidding_refill_per_min,
            "bidding",
        )
    if method == "POST" and (path.endswith("/messages") or path.startswith("/messages/")):
        return (
            settings.rate_limit_messaging_capacity,
            settings.rate_limit_messaging_refill_per_min,
            "messaging",
        )
    if method in ("POST", "PUT", "PATCH", "DELETE"):
        return (
            settings.rate_limit_write_capacity,
            settings.rate_limit_write_refill_per_min,
            "write",
        )
    return (
        settings.rate_limit_read_capacity,
        settings.rate_limit_read_refill_per_min,
        "read",
    )


def get_client_ip(request: Request) -> str:
    """Extract client IP, respecting X-Forwarded-For for reverse proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First IP in the chain is the original client
        return forwarded_for.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def bucket_key(request: Request, category: str) -> str:
    """Per-session bucket for authenticated callers, per-IP otherwise."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer ") and auth_header[7:].strip():
        # Hash prefix only: raw tokens never reach Redis
        return f"ratelimit:session:{hash_token(auth_header[7:].strip())[:32]}:{category}"
    return f"ratelimit:ip:{get_client_ip(request)}:{category}"


async def check_rate_limit(
    request: Request,
    response: Response,
    redis: aioredis.Redis = Depends(get_redis),
) -> None:
    """Rate limit dependency."""
    capacity, refill_rate, category = get_rate_config(request.method.upper(), request.url.path)
    key = bucket_key(request, category)

    result = await redis.eval(
        _TOKEN_BUCKET_SCRIPT, 1, key, capacity, refill_rate, time.time()
    )
    allowed, remaining, retry_after = int(result[0]), int(result[1]), int(result[2])

    response.headers["X-RateLimit-Limit"] = str(capacity)
    response.headers["X-RateLimit-Remaining"] = str(remaining)

    if not allowed:
        response.headers["Retry-After"] = str(retry_after)
        raise HTTPException(status_code=429, detail="Rate limit exceeded")
