"""Tests for status mapping in the shared JSON client."""

import httpx
import pytest

from workfeed.errors import (
    AccessDeniedError,
    AuthError,
    InvalidResponseError,
    UnauthorizedError,
    UpstreamStatusError,
)

API = "https://api.example.com"


async def test_success_decodes_json(http, router):
    router.json("GET", f"{API}/me", {"login": "octocat"})

    assert await http.get_json(f"{API}/me", "token") == {"login": "octocat"}
    request = router.requests[0]
    assert request.headers["authorization"] == "Bearer token"
    assert request.headers["user-agent"].startswith("WorkWidget/")


async def test_forbidden_is_access_denied(http, router):
    router.add("GET", f"{API}/me", httpx.Response(403, text="forbidden"))

    with pytest.raises(AccessDeniedError) as exc_info:
        await http.get_json(f"{API}/me", "token")

    assert isinstance(exc_info.value, AuthError)
    assert "api.example.com" in str(exc_info.value)


async def test_unauthorized(http, router):
    router.add("POST", f"{API}/query", httpx.Response(401))

    with pytest.raises(UnauthorizedError):
        await http.post_json(f"{API}/query", "token", {})


async def test_other_failures_keep_the_status(http, router):
    router.add("GET", f"{API}/me", httpx.Response(500, text="boom"))

    with pytest.raises(UpstreamStatusError) as exc_info:
        await http.get_json(f"{API}/me", "token")

    assert exc_info.value.status_code == 500
    assert exc_info.value.body == "boom"


async def test_invalid_json(http, router):
    router.add("GET", f"{API}/me", httpx.Response(200, text="<html>"))

    with pytest.raises(InvalidResponseError):
        await http.get_json(f"{API}/me", "token")
