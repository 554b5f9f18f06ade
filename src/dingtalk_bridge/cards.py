"""
AI card service: create, stream into and finish live reply cards.

Every update on a card is serialised through the card's lock so updates
land in the order they were issued, and a finalized card refuses further
updates.
"""

import json
import logging
import secrets
import time
from typing import Optional

import httpx

from dingtalk_bridge.config import DEFAULT_CARD_TEMPLATE_ID
from dingtalk_bridge.errors import ApiError, AuthError
from dingtalk_bridge.models.card import CardInstance, CardStatus
from dingtalk_bridge.transport.http import HttpClient

logger = logging.getLogger(__name__)

CARD_INSTANCES_PATH = "/v1.0/card/instances"
CARD_DELIVER_PATH = "/v1.0/card/instances/deliver"
CARD_STREAMING_PATH = "/v1.0/card/streaming"
CONTENT_KEY = "msgContent"


def open_space_id(conversation_id: str, is_group: bool) -> str:
    if is_group:
        return f"dtv1.card//IM_GROUP.{conversation_id}"
    return f"dtv1.card//IM_ROBOT.{conversation_id}"


def _card_param_map(status: str, content: str) -> dict[str, str]:
    return {
        "flowStatus": status,
        CONTENT_KEY: content,
        "staticMsgContent": "",
        "sys_full_json_obj": json.dumps({"order": [CONTENT_KEY]}),
    }


class CardService:
    def __init__(self, http: HttpClient, template_id: str = DEFAULT_CARD_TEMPLATE_ID):
        self._http = http
        self._template_id = template_id

    @staticmethod
    def _new_instance_id() -> str:
        return f"card_{int(time.time() * 1000)}_{secrets.token_hex(4)}"

    async def create_card(self, conversation_id: str, is_group: bool) -> Optional[CardInstance]:
        """Create and deliver a card. Returns None on any failure so the caller can fall back."""
        card_id = self._new_instance_id()
        space_id = open_space_id(conversation_id, is_group)
        try:
            await self._http.post(CARD_INSTANCES_PATH, {
                "cardTemplateId": self._template_id,
                "outTrackId": card_id,
                "cardData": {"cardParamMap": {}},
                "callbackType": "STREAM",
            })
            logger.info("Created AI card %s", card_id)
            await self._http.post(CARD_DELIVER_PATH, {
                "outTrackId": card_id,
                "openSpaceId": space_id,
            })
            logger.info("Delivered AI card to %s", space_id)
        except (ApiError, AuthError, httpx.HTTPError):
            logger.exception("Failed to create AI card for %s", conversation_id)
            return None
        return CardInstance(card_instance_id=card_id)

    async def _update_status(self, card: CardInstance, status: str, content: str) -> None:
        await self._http.put(CARD_INSTANCES_PATH, {
            "outTrackId": card.card_instance_id,
            "cardData": {"cardParamMap": _card_param_map(status, content)},
        })

    async def _stream(self, card: CardInstance, content: str, finalize: bool) -> None:
        if not card.inputing_started:
            await self._update_status(card, CardStatus.INPUTING, "")
            card.inputing_started = True
            logger.debug("AI card %s switched to INPUTING", card.card_instance_id)

        await self._http.put(CARD_STREAMING_PATH, {
            "outTrackId": card.card_instance_id,
            "guid": f"{int(time.time() * 1000)}_{secrets.token_hex(3)}",
            "key": CONTENT_KEY,
            "content": content,
            "isFull": True,
            "isFinalize": finalize,
            "isError": False,
        })
        logger.debug("Streamed %d chars to AI card %s", len(content), card.card_instance_id)

    async def stream_content(self, card: CardInstance, content: str, finalize: bool = False) -> None:
        """Replace the card's content. Ignored with a warning once the card is finalized."""
        async with card.lock:
            if card.finalized:
                logger.warning("Ignoring update to finalized AI card %s", card.card_instance_id)
                return
            await self._stream(card, content, finalize)
            if finalize:
                card.finalized = True

    async def finish_card(self, card: CardInstance, content: str) -> None:
        """Final streaming update, then the FINISHED status carrying the content."""
        async with card.lock:
            if card.finalized:
                logger.warning("AI card %s already finalized", card.card_instance_id)
                return
            # Finalized at most once, even when the finishing calls fail
            card.finalized = True
            await self._stream(card, content, finalize=True)
            await self._update_status(card, CardStatus.FINISHED, content)
        logger.info("AI card %s finished", card.card_instance_id)
