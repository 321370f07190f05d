"""Tests for the token bucket rate limiter (servicehub/auth/rate_limit.py).

Redis is mocked: the Lua script runs server-side, so these tests cover
endpoint categorisation, bucket keys and how script results are applied.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException, Response

from servicehub.auth.rate_limit import bucket_key, check_rate_limit, get_client_ip, get_rate_config
from servicehub.config import settings


def _request(method: str = "GET", path: str = "/jobs", headers: dict | None = None, host: str = "127.0.0.1"):  # type: ignore[no-untyped-def]
    request = MagicMock()
    request.method = method
    request.url.path = path
    request.headers = headers or {}
    request.client = MagicMock()
    request.client.host = host
    return request


@pytest.mark.parametrize(
    ("method", "path", "category"),
    [
        ("POST", "/users", "registration"),
        ("POST", "/users/", "registration"),
        ("POST", "/jobs/123/categorizations", "categorization"),
        ("POST", "/jobs/123/bids", "bidding"),
        ("POST", "/bids/456/accept", "bidding"),
        ("POST", "/chats/789/messages", "messaging"),
        ("POST", "/messages/read", "messaging"),
        ("POST", "/jobs", "write"),
        ("DELETE", "/messages/abc", "write"),
        ("GET", "/jobs/123", "read"),
        ("GET", "/chats/789/messages", "read"),
    ],
)
def test_endpoint_categories(method: str, path: str, category: str) -> None:
    assert get_rate_config(method, path)[2] == category


def test_registration_is_tightest() -> None:
    reg_cap, reg_refill, _ = get_rate_config("POST", "/users")
    read_cap, read_refill, _ = get_rate_config("GET", "/jobs")
    assert reg_cap < read_cap
    assert reg_refill < read_refill


def test_client_ip_respects_forwarded_for() -> None:
    request = _request(headers={"X-Forwarded-For": "1.2.3.4, 5.6.7.8"})
    assert get_client_ip(request) == "1.2.3.4"

    request.headers = {}
    assert get_client_ip(request) == "127.0.0.1"

    request.client = None
    assert get_client_ip(request) == "unknown"


def test_bucket_key_uses_session_when_authenticated() -> None:
    first = bucket_key(_request(headers={"Authorization": "Bearer tok-a"}, host="10.0.0.1"), "read")
    same_token_other_ip = bucket_key(
        _request(headers={"Authorization": "Bearer tok-a"}, host="10.0.0.2"), "read"
    )
    other_token = bucket_key(_request(headers={"Authorization": "Bearer tok-b"}), "read")

    assert first == same_token_other_ip
    assert first != other_token
    assert first.startswith("ratelimit:session:")
    assert "tok-a" not in first


def test_bucket_key_falls_back_to_ip() -> None:
    key = bucket_key(_request(headers={"X-Forwarded-For": "10.0.0.9"}), "write")
    assert key == "ratelimit:ip:10.0.0.9:write"
    # A bare scheme is anonymous
    assert bucket_key(_request(headers={"Authorization": "Bearer "}, host="10.1.1.1"), "read") == (
        "ratelimit:ip:10.1.1.1:read"
    )


@pytest.mark.asyncio
async def test_allowed_request_sets_headers() -> None:
    redis = AsyncMock()
    redis.eval.return_value = [1, 41, 0]
    response = Response()

    await check_rate_limit(_request("POST", "/chats/1/messages"), response, redis)

    assert response.headers["X-RateLimit-Limit"] == str(settings.rate_limit_messaging_capacity)
    assert response.headers["X-RateLimit-Remaining"] == "41"
    args = redis.eval.await_args.args
    assert args[1] == 1
    assert args[2] == "ratelimit:ip:127.0.0.1:messaging"
    assert args[3:5] == (
        settings.rate_limit_messaging_capacity, settings.rate_limit_messaging_refill_per_min
    )


@pytest.mark.asyncio
async def test_exhausted_bucket_returns_429() -> None:
    redis = AsyncMock()
    redis.eval.return_value = [0, 0, 7]
    response = Response()

    with pytest.raises(HTTPException) as exc:
        await check_rate_limit(_request("POST", "/users"), response, redis)

    assert exc.value.status_code == 429
    assert exc.value.detail == "Rate limit exceeded"
    assert response.headers["Retry-After"] == "7"
    assert response.headers["X-RateLimit-Remaining"] == "0"
