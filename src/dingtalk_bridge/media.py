"""
Media upload: replaces local image paths in replies with uploaded media ids.
"""

import logging
import re
from pathlib import Path
from typing import Optional

import httpx

from dingtalk_bridge.errors import ApiError, AuthError
from dingtalk_bridge.transport.http import HttpClient, TokenProvider

logger = logging.getLogger(__name__)

UPLOAD_URL = "https://oapi.dingtalk.com/media/upload"

_MARKDOWN_IMAGE_RE = re.compile(
    r"!\[([^\]]*)\]\(((?:file://|MEDIA:|attachment://)[^\s)]+|/(?:tmp|var|private|Users)[^\s)]+)\)"
)
_BARE_PATH_RE = re.compile(
    r"`?(/(?:tmp|var|private|Users)/[^\s`'\",)]+\.(?:png|jpg|jpeg|gif|bmp|webp))`?",
    re.IGNORECASE,
)

MEDIA_SYSTEM_PROMPT = """
## 钉钉图片显示规则
显示图片时，直接使用本地文件路径，系统会自动上传处理。

### 正确方式
![描述](file:///path/to/image.jpg)
![描述](/tmp/screenshot.png)

### 禁止
- 不要自己执行 curl 上传
- 不要猜测或构造 URL
- 不要使用 https://oapi.dingtalk.com/... 这类地址
"""


def build_media_system_prompt() -> str:
    return MEDIA_SYSTEM_PROMPT


def _local_path(ref: str) -> str:
    for prefix in ("file://", "attachment://", "MEDIA:"):
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


class MediaService:
    def __init__(self, http: HttpClient, token_provider: TokenProvider, upload_url: str = UPLOAD_URL):
        self._http = http
        self._token_provider = token_provider
        self._upload_url = upload_url

    async def upload_image(self, file_path: str) -> Optional[str]:
        """Upload a local image. Returns ``@<media_id>`` or None."""
        path = Path(_local_path(file_path))
        if not path.is_file():
            logger.warning("Image file not found: %s", path)
            return None
        try:
            token = await self._token_provider()
            result = await self._http.upload(
                f"{self._upload_url}?access_token={token}&type=image",
                str(path),
            )
        except (ApiError, AuthError, httpx.HTTPError, OSError):
            logger.exception("Failed to upload image %s", path)
            return None
        media_id = result.get("media_id") if isinstance(result, dict) else None
        if not media_id:
            logger.warning("Upload of %s returned no media_id", path)
            return None
        logger.info("Uploaded image %s -> %s", path, media_id)
        return f"@{media_id}"

    async def process_local_images(self, content: str) -> str:
        processed = content

        for match in list(_MARKDOWN_IMAGE_RE.finditer(content)):
            alt, ref = match.group(1), match.group(2)
            media_id = await self.upload_image(ref)
            if media_id:
                processed = processed.replace(match.group(0), f"![{alt}]({media_id})", 1)

        for match in list(_BARE_PATH_RE.finditer(processed)):
            media_id = await self.upload_image(match.group(1))
            if media_id:
                processed = processed.replace(match.group(0), f"![image]({media_id})", 1)

        return processed
