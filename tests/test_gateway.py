"""Tests for the OpenClaw gateway SSE client."""

import json

import httpx
import pytest

from dingtalk_bridge.errors import ApiError
from dingtalk_bridge.gateway import OpenClawGateway
from dingtalk_bridge.history import ChatMessage


def sse(*deltas: str, done: bool = True) -> bytes:
    lines = [": keepalive", ""]
    for delta in deltas:
        lines.append("data: " + json.dumps({"choices": [{"delta": {"content": delta}}]}))
        lines.append("")
    lines.append("data: not-json")
    lines.append("")
    if done:
        lines.append("data: [DONE]")
        lines.append("")
    return "\n".join(lines).encode()


@pytest.mark.asyncio
async def test_stream_chat_yields_deltas():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, content=sse("Hel", "lo"), headers={"Content-Type": "text/event-stream"})

    gw = OpenClawGateway("http://gw:18789/", token="secret", transport=httpx.MockTransport(handler))
    chunks = [c async for c in gw.stream_chat([ChatMessage(role="user", content="hi")], "dingtalk:u1", "be nice")]
    assert chunks == ["Hel", "lo"]

    req = seen[0]
    assert req.url.path == "/v1/chat/completions"
    assert req.headers["Authorization"] == "Bearer secret"
    body = json.loads(req.content)
    assert body["stream"] is True
    assert body["user"] == "dingtalk:u1"
    assert body["messages"] == [
        {"role": "system", "content": "be nice"},
        {"role": "user", "content": "hi"},
    ]
    await gw.close()


@pytest.mark.asyncio
async def test_password_used_when_no_token():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, content=sse("x"))

    gw = OpenClawGateway("http://gw", password="pw", transport=httpx.MockTransport(handler))
    assert await gw.chat_completion([], "s") == "x"
    assert seen[0].headers["Authorization"] == "Bearer pw"
    assert "system" not in [m["role"] for m in json.loads(seen[0].content)["messages"]]


@pytest.mark.asyncio
async def test_stream_without_done_ends_cleanly():
    gw = OpenClawGateway("http://gw", transport=httpx.MockTransport(lambda r: httpx.Response(200, content=sse("a", done=False))))
    assert await gw.chat_completion([], "s") == "a"


@pytest.mark.asyncio
async def test_error_status_raises():
    gw = OpenClawGateway("http://gw", transport=httpx.MockTransport(lambda r: httpx.Response(502, text="bad gateway")))
    with pytest.raises(ApiError) as exc:
        await gw.chat_completion([], "s")
    assert exc.value.status_code == 502
