"""
Live reply streaming: relay an agent's token stream into an AI card.

One turn goes through:
- Card: created up front; on failure the turn uses the single-message path.
- Throttled updates: the accumulated reply replaces the card content at most
  once per update interval.
- Finish: one finalizing update with the complete reply, then the FINISHED
  status. Without a card the complete reply is sent as one message.

Stream errors never escape a turn: the card (or a plain message) gets a fixed
error text and the turn ends.
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Callable, Optional

import httpx
from pydantic import BaseModel

from dingtalk_bridge.cards import CardService
from dingtalk_bridge.errors import ApiError, AuthError
from dingtalk_bridge.history import ConversationHistory
from dingtalk_bridge.media import MediaService
from dingtalk_bridge.models.card import CardInstance
from dingtalk_bridge.outbound import MessageSender, OutboundTarget

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_INTERVAL = 0.3
ERROR_MESSAGE = "❌ 处理消息时出错，请稍后重试。"
NEW_SESSION_MESSAGE = "✨ 已开启新会话，之前的对话已清空。"

DELIVERY_ERRORS = (ApiError, AuthError, httpx.HTTPError)


class ReplyResult(BaseModel):
    content: str
    used_card: bool
    delivered: bool
    updates: int = 0
    error: Optional[str] = None


class ResponseBuffer:
    """Accumulates streamed chunks for one turn."""

    def __init__(self) -> None:
        self._parts: list[str] = []

    def collect(self, chunk: str) -> str:
        if chunk:
            self._parts.append(chunk)
        return self.text

    @property
    def text(self) -> str:
        return "".join(self._parts)


class ReplyStreamer:
    def __init__(
        self,
        cards: Optional[CardService],
        sender: MessageSender,
        history: ConversationHistory,
        update_interval: float = DEFAULT_UPDATE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        media: Optional[MediaService] = None,
    ):
        self._cards = cards
        self._sender = sender
        self._history = history
        self._update_interval = update_interval
        self._clock = clock
        self._media = media

    async def _create_card(self, target: OutboundTarget) -> Optional[CardInstance]:
        if self._cards is None:
            return None
        return await self._cards.create_card(target.conversation_id, target.is_group)

    async def run(self, target: OutboundTarget, session_key: str, chunks: AsyncIterator[str]) -> ReplyResult:
        """Drive one turn's reply from ``chunks`` to the conversation."""
        card = await self._create_card(target)
        used_card = card is not None
        buffer = ResponseBuffer()
        last_update: Optional[float] = None
        updates = 0
        # Intermediate updates stop after a failure; the card is still finished
        streaming = used_card

        try:
            async for chunk in chunks:
                response = buffer.collect(chunk)
                if not streaming:
                    continue
                now = self._clock()
                if last_update is not None and now - last_update < self._update_interval:
                    continue
                last_update = now
                try:
                    await self._cards.stream_content(card, response)  # type: ignore[union-attr]
                    updates += 1
                except DELIVERY_ERRORS:
                    logger.exception("AI card update failed, finishing the card with the full reply")
                    streaming = False
        except asyncio.CancelledError:
            if card is not None:
                await self._finish_or_send(target, card, buffer.text or ERROR_MESSAGE)
            raise
        except Exception as e:
            logger.exception("Error in streaming response for session %s", session_key)
            delivered = await self._finish_or_send(target, card, ERROR_MESSAGE)
            self._remember(session_key, buffer.text)
            return ReplyResult(
                content=buffer.text, used_card=used_card, delivered=delivered, updates=updates, error=str(e),
            )

        content = buffer.text
        if self._media is not None and content:
            content = await self._media.process_local_images(content)
        delivered = await self._finish_or_send(target, card, content)
        self._remember(session_key, content)
        logger.info("Response sent to %s: %d chars", target.conversation_id, len(content))
        return ReplyResult(content=content, used_card=used_card, delivered=delivered, updates=updates)

    async def reply_once(self, target: OutboundTarget, text: str) -> bool:
        """Deliver a fixed message through a card if possible, otherwise as one message."""
        card = await self._create_card(target)
        return await self._finish_or_send(target, card, text)

    async def _finish_or_send(self, target: OutboundTarget, card: Optional[CardInstance], content: str) -> bool:
        if card is not None:
            try:
                await self._cards.finish_card(card, content)  # type: ignore[union-attr]
                return True
            except DELIVERY_ERRORS:
                logger.exception("Failed to finish AI card %s, sending a single message", card.card_instance_id)
        if not content:
            logger.warning("Empty reply for %s, nothing sent", target.conversation_id)
            return False
        try:
            await self._sender.send_text(target, content)
            return True
        except DELIVERY_ERRORS:
            logger.exception("Failed to send reply to %s", target.conversation_id)
            return False

    def _remember(self, session_key: str, content: str) -> None:
        if content:
            self._history.append(session_key, "assistant", content)
