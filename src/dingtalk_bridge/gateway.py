"""
Upstream agent gateway.

The bridge only needs ``stream_chat``: given the turn's history, a session
key and an optional system prompt, yield the reply as text chunks. The
OpenClaw gateway speaks the OpenAI-compatible chat completions API with SSE
streaming.
"""

import json
import logging
from typing import Any, AsyncIterator, Optional, Protocol

import httpx

from dingtalk_bridge.errors import ApiError
from dingtalk_bridge.history import ChatMessage
from dingtalk_bridge.models.message import InboundMessage

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/v1/chat/completions"
DONE_SENTINEL = "[DONE]"


class AgentGateway(Protocol):
    def stream_chat(
        self,
        messages: list[ChatMessage],
        session_key: str,
        system_prompt: Optional[str] = None,
        inbound: Optional[InboundMessage] = None,
    ) -> AsyncIterator[str]: ...


def _chunk_content(data: str) -> Optional[str]:
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping unparsable SSE chunk")
        return None
    choices = parsed.get("choices") if isinstance(parsed, dict) else None
    if not choices:
        return None
    delta = choices[0].get("delta") or {}
    content = delta.get("content")
    return content if isinstance(content, str) and content else None


class OpenClawGateway:
    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        password: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 300.0,
    ):
        self._url = url.rstrip("/")
        self._secret = token or password
        self._client = httpx.AsyncClient(
            base_url=self._url,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self._secret:
            headers["Authorization"] = f"Bearer {self._secret}"
        return headers

    @staticmethod
    def _request_body(messages: list[ChatMessage], session_key: str, system_prompt: Optional[str]) -> dict[str, Any]:
        all_messages: list[dict[str, str]] = []
        if system_prompt:
            all_messages.append({"role": "system", "content": system_prompt})
        all_messages.extend(m.model_dump() for m in messages)
        return {"model": "default", "messages": all_messages, "stream": True, "user": session_key}

    async def stream_chat(
        self,
        messages: list[ChatMessage],
        session_key: str,
        system_prompt: Optional[str] = None,
        inbound: Optional[InboundMessage] = None,
    ) -> AsyncIterator[str]:
        """Yield content deltas until ``[DONE]`` or end of stream."""
        logger.debug("Sending request to gateway %s%s", self._url, COMPLETIONS_PATH)
        body = self._request_body(messages, session_key, system_prompt)
        async with self._client.stream("POST", COMPLETIONS_PATH, json=body, headers=self._headers()) as resp:
            if resp.status_code >= 400:
                text = (await resp.aread()).decode(errors="replace")
                raise ApiError(resp.status_code, f"Gateway HTTP {resp.status_code}: {text[:200]}")
            async for line in resp.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[5:].strip()
                if data == DONE_SENTINEL:
                    logger.debug("Gateway stream completed")
                    return
                content = _chunk_content(data)
                if content:
                    yield content

    async def chat_completion(
        self,
        messages: list[ChatMessage],
        session_key: str,
        system_prompt: Optional[str] = None,
    ) -> str:
        """Non-streaming convenience: the whole reply as one string."""
        parts = [chunk async for chunk in self.stream_chat(messages, session_key, system_prompt)]
        return "".join(parts)

    async def close(self) -> None:
        await self._client.aclose()
