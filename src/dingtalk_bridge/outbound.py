"""
Discrete (non-card) outbound messages.

Two interchangeable senders implement the same capability:

- OpenApiSender posts through the robot OpenAPI (group send / one-to-one
  batch send) and works for any known conversation.
- WebhookSender posts to the ``sessionWebhook`` handed out with an inbound
  message, the legacy robot style, and falls back to the OpenAPI when the
  target has no webhook.
"""

import json
import logging
from typing import Any, Optional, Protocol

from pydantic import BaseModel

from dingtalk_bridge.transport.http import HttpClient

logger = logging.getLogger(__name__)

GROUP_SEND_PATH = "/v1.0/robot/groupMessages/send"
DM_SEND_PATH = "/v1.0/robot/oToMessages/batchSend"


class OutboundTarget(BaseModel):
    conversation_id: str
    is_group: bool = False
    user_id: Optional[str] = None
    session_webhook: Optional[str] = None


class SendResult(BaseModel):
    msg_id: str = ""
    conversation_id: str


class MessageSender(Protocol):
    async def send_text(self, target: OutboundTarget, text: str) -> SendResult: ...

    async def send_markdown(self, target: OutboundTarget, title: str, text: str) -> SendResult: ...

    async def send_card(self, target: OutboundTarget, card: dict[str, Any]) -> SendResult: ...


class OpenApiSender:
    def __init__(self, http: HttpClient, robot_code: str):
        self._http = http
        self._robot_code = robot_code

    async def _send(self, target: OutboundTarget, msg_key: str, param: dict[str, Any]) -> SendResult:
        if target.is_group:
            result = await self._http.post(GROUP_SEND_PATH, {
                "robotCode": self._robot_code,
                "openConversationId": target.conversation_id,
                "msgKey": msg_key,
                "msgParam": json.dumps(param, ensure_ascii=False),
            })
        else:
            result = await self._http.post(DM_SEND_PATH, {
                "robotCode": self._robot_code,
                "userIds": [target.user_id or target.conversation_id],
                "msgKey": msg_key,
                "msgParam": json.dumps(param, ensure_ascii=False),
            })
        result = result if isinstance(result, dict) else {}
        msg_id = result.get("processQueryKey") or result.get("msgId") or ""
        logger.info("Sent %s to %s", msg_key, target.conversation_id)
        return SendResult(msg_id=msg_id, conversation_id=target.conversation_id)

    async def send_text(self, target: OutboundTarget, text: str) -> SendResult:
        return await self._send(target, "sampleText", {"content": text})

    async def send_markdown(self, target: OutboundTarget, title: str, text: str) -> SendResult:
        return await self._send(target, "sampleMarkdown", {"title": title, "text": text})

    async def send_card(self, target: OutboundTarget, card: dict[str, Any]) -> SendResult:
        return await self._send(target, "sampleActionCard", card)


class WebhookSender:
    def __init__(self, http: HttpClient, fallback: OpenApiSender):
        self._http = http
        self._fallback = fallback

    async def _post(self, target: OutboundTarget, body: dict[str, Any]) -> SendResult:
        await self._http.post_url(target.session_webhook, body)  # type: ignore[arg-type]
        logger.info("Sent %s via session webhook to %s", body["msgtype"], target.conversation_id)
        return SendResult(conversation_id=target.conversation_id)

    async def send_text(self, target: OutboundTarget, text: str) -> SendResult:
        if not target.session_webhook:
            return await self._fallback.send_text(target, text)
        return await self._post(target, {"msgtype": "text", "text": {"content": text}})

    async def send_markdown(self, target: OutboundTarget, title: str, text: str) -> SendResult:
        if not target.session_webhook:
            return await self._fallback.send_markdown(target, title, text)
        return await self._post(target, {"msgtype": "markdown", "markdown": {"title": title, "text": text}})

    async def send_card(self, target: OutboundTarget, card: dict[str, Any]) -> SendResult:
        if not target.session_webhook:
            return await self._fallback.send_card(target, card)
        return await self._post(target, {"msgtype": "actionCard", "actionCard": card})


def create_sender(http: HttpClient, robot_code: str, mode: str = "openapi") -> MessageSender:
    api = OpenApiSender(http, robot_code)
    if mode == "webhook":
        return WebhookSender(http, api)
    return api


async def send_message(
    sender: MessageSender,
    target: OutboundTarget,
    text: Optional[str] = None,
    markdown: Optional[dict[str, str]] = None,
    card: Optional[dict[str, Any]] = None,
) -> SendResult:
    """Send whichever format is given, preferring card, then markdown, then text."""
    if card:
        return await sender.send_card(target, card)
    if markdown:
        return await sender.send_markdown(target, markdown["title"], markdown["text"])
    if text:
        return await sender.send_text(target, text)
    raise ValueError("Must provide one of: text, markdown, or card")
