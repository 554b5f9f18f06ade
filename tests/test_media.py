"""Tests for local image upload in replies."""

import httpx
import pytest

from dingtalk_bridge.media import MediaService, build_media_system_prompt
from dingtalk_bridge.transport.http import HttpClient


async def static_token() -> str:
    return "tok"


def make_service(handler) -> MediaService:
    http = HttpClient(token_provider=static_token, transport=httpx.MockTransport(handler))
    return MediaService(http, static_token)


def test_system_prompt_mentions_local_paths():
    assert "file://" in build_media_system_prompt()


@pytest.mark.asyncio
async def test_markdown_image_is_uploaded(tmp_path):
    image = tmp_path / "shot.png"
    image.write_bytes(b"\x89PNG")
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"errcode": 0, "media_id": "m123"})

    service = make_service(handler)
    out = await service.process_local_images(f"see ![chart](file://{image}) here")
    assert out == "see ![chart](@m123) here"
    assert seen[0].url.host == "oapi.dingtalk.com"
    assert seen[0].url.params["access_token"] == "tok"
    assert seen[0].url.params["type"] == "image"


@pytest.mark.asyncio
async def test_missing_file_leaves_content_untouched():
    def handler(request):
        raise AssertionError("no upload expected")

    service = make_service(handler)
    text = "![x](file:///tmp/definitely-missing-file.png)"
    assert await service.process_local_images(text) == text


@pytest.mark.asyncio
async def test_upload_failure_returns_none(tmp_path):
    image = tmp_path / "a.jpg"
    image.write_bytes(b"jpg")
    service = make_service(lambda r: httpx.Response(500, json={"errmsg": "fail"}))
    assert await service.upload_image(str(image)) is None
