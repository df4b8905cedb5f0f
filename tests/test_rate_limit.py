"""
Unit tests for the in-memory rate limiter.
"""
import pytest
from unittest.mock import Mock
from fastapi import HTTPException

from app.core.rate_limit import (
    check_rate_limit,
    check_stk_push_rate_limit,
    get_client_ip,
    prune_rate_limit_store,
    rate_limit_store,
)


@pytest.fixture(autouse=True)
def clear_store():
    rate_limit_store.clear()
    yield
    rate_limit_store.clear()


def make_request(headers=None, host="10.0.0.5"):
    request = Mock()
    request.headers = headers or {}
    request.client = Mock(host=host)
    return request


def test_client_ip_prefers_forwarded_header():
    request = make_request({"X-Forwarded-For": "196.201.214.200, 10.0.0.1"})
    assert get_client_ip(request) == "196.201.214.200"


def test_client_ip_cloudflare_then_socket():
    assert get_client_ip(make_request({"CF-Connecting-IP": "41.90.1.1"})) == "41.90.1.1"
    assert get_client_ip(make_request()) == "10.0.0.5"


def test_check_rate_limit_blocks_after_max():
    request = make_request()
    for _ in range(3):
        check_rate_limit(request, max_requests=3, window_seconds=60)

    with pytest.raises(HTTPException) as exc_info:
        check_rate_limit(request, max_requests=3, window_seconds=60)
    assert exc_info.value.status_code == 429


def test_stk_push_limit_shares_bucket_across_phone_formats():
    """Different users targeting one handset share the phone bucket."""
    check_stk_push_rate_limit("u1", "0712345678", max_requests=1, window_seconds=60)

    with pytest.raises(HTTPException):
        check_stk_push_rate_limit("u2", "+254712345678", max_requests=1, window_seconds=60)


def test_stk_push_limit_per_user():
    check_stk_push_rate_limit("u1", "0712345678", max_requests=1, window_seconds=60)

    with pytest.raises(HTTPException):
        check_stk_push_rate_limit("u1", "0799999999", max_requests=1, window_seconds=60)

    # Another user and another handset are unaffected
    check_stk_push_rate_limit("u2", "0700000000", max_requests=1, window_seconds=60)


def test_prune_drops_idle_buckets():
    rate_limit_store["stk-push:user:old"] = [1000.0]
    rate_limit_store["stk-push:user:recent"] = [4500.0]
    rate_limit_store["empty"] = []

    removed = prune_rate_limit_store(now=5000.0, idle_seconds=3600)

    assert removed == 2
    assert list(rate_limit_store) == ["stk-push:user:recent"]
