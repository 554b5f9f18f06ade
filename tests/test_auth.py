"""Tests for the access token cache."""

import asyncio
import json

import httpx
import pytest

from dingtalk_bridge.auth import Credentials, TokenCache
from dingtalk_bridge.errors import AuthError
from dingtalk_bridge.transport.http import HttpClient


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def token_transport(calls: list, status: int = 200, body=None, delay: float = 0.0):
    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content))
        if delay:
            await asyncio.sleep(delay)
        payload = body if body is not None else {"accessToken": f"tok-{len(calls)}", "expireIn": 7200}
        return httpx.Response(status, json=payload)

    return httpx.MockTransport(handler)


def make_cache(transport, clock=None) -> TokenCache:
    http = HttpClient(transport=transport)
    return TokenCache(http, Credentials(app_key="key", app_secret="secret"), clock=clock or FakeClock())


@pytest.mark.asyncio
async def test_single_refresh_within_validity():
    calls: list = []
    clock = FakeClock()
    cache = make_cache(token_transport(calls), clock)

    assert await cache.get_token_value() == "tok-1"
    clock.now += 7200 - 301
    assert await cache.get_token_value() == "tok-1"
    assert len(calls) == 1
    assert calls[0] == {"appKey": "key", "appSecret": "secret"}


@pytest.mark.asyncio
async def test_refresh_after_expiry_margin():
    calls: list = []
    clock = FakeClock()
    cache = make_cache(token_transport(calls), clock)

    await cache.get_token()
    clock.now += 7200 - 299
    assert await cache.get_token_value() == "tok-2"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh():
    calls: list = []
    cache = make_cache(token_transport(calls, delay=0.01))

    values = await asyncio.gather(*(cache.get_token_value() for _ in range(10)))
    assert set(values) == {"tok-1"}
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_invalidate_forces_refresh():
    calls: list = []
    cache = make_cache(token_transport(calls))
    await cache.get_token()
    cache.invalidate()
    assert await cache.get_token_value() == "tok-2"


@pytest.mark.asyncio
async def test_rejected_credentials_raise_auth_error():
    calls: list = []
    cache = make_cache(token_transport(calls, status=400, body={"code": "invalidClientId", "message": "bad"}))
    with pytest.raises(AuthError):
        await cache.get_token()


@pytest.mark.asyncio
async def test_missing_token_in_response_raises_auth_error():
    calls: list = []
    cache = make_cache(token_transport(calls, body={"expireIn": 7200}))
    with pytest.raises(AuthError):
        await cache.get_token()


def test_safety_margin_has_floor():
    http = HttpClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    cache = TokenCache(http, Credentials(app_key="k", app_secret="s"), safety_margin=5)
    assert cache._margin == 60.0
