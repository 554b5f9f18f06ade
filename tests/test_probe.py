"""Tests for the connectivity probe."""

import httpx
import pytest

from dingtalk_bridge.config import BridgeConfig
from dingtalk_bridge.probe import probe
from dingtalk_bridge.transport.http import HttpClient

CONFIG = BridgeConfig(app_key="key", app_secret="secret", robot_code="robot1")


def make_http(handler) -> HttpClient:
    return HttpClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_probe_ok():
    result = await probe(CONFIG, make_http(lambda r: httpx.Response(200, json={"accessToken": "t", "expireIn": 7200})))
    assert result.ok
    assert result.app_key == "key"
    assert result.error is None


@pytest.mark.asyncio
async def test_probe_missing_credentials():
    result = await probe(BridgeConfig())
    assert not result.ok
    assert "credentials" in result.error


@pytest.mark.asyncio
async def test_probe_unauthorized():
    result = await probe(CONFIG, make_http(lambda r: httpx.Response(401, json={"message": "nope"})))
    assert not result.ok
    assert result.error == "Authentication failed: invalid appKey or appSecret"


@pytest.mark.asyncio
async def test_probe_other_api_error():
    result = await probe(CONFIG, make_http(lambda r: httpx.Response(400, json={"errorMessage": "app suspended"})))
    assert not result.ok
    assert result.error == "API error (400): app suspended"


@pytest.mark.asyncio
async def test_probe_network_error():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    result = await probe(CONFIG, make_http(handler))
    assert not result.ok
    assert "unreachable" in result.error


@pytest.mark.asyncio
async def test_probe_bot_info():
    def handler(request):
        if request.url.path == "/v1.0/oauth2/accessToken":
            return httpx.Response(200, json={"accessToken": "t"})
        assert request.headers["x-acs-dingtalk-access-token"] == "t"
        assert request.url.params["robotCode"] == "robot1"
        return httpx.Response(200, json={"result": {"name": "Helper", "userId": "bot-u1"}})

    result = await probe(CONFIG, make_http(handler), fetch_bot_info=True)
    assert result.ok
    assert result.bot_name == "Helper"
    assert result.bot_user_id == "bot-u1"


@pytest.mark.asyncio
async def test_bot_info_leaves_shared_client_token_unchanged():
    seen = []

    async def app_token() -> str:
        return "app-token"

    def handler(request):
        if request.url.path == "/v1.0/oauth2/accessToken":
            return httpx.Response(200, json={"accessToken": "probe-token"})
        seen.append(request.headers["x-acs-dingtalk-access-token"])
        return httpx.Response(200, json={"result": {"name": "Helper"}})

    http = HttpClient(token_provider=app_token, transport=httpx.MockTransport(handler))
    result = await probe(CONFIG, http, fetch_bot_info=True)
    assert result.ok
    assert http.token_provider is app_token

    await http.get("/v1.0/robot/info", query={"robotCode": "robot1"})
    assert seen == ["probe-token", "app-token"]
