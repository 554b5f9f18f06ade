"""
DingTalkClient: the OpenAPI side of the bridge in one explicit object.

Holds the HTTP client, the shared token cache and the services built on
them. Components receive it at construction instead of reaching for
module-level state, so several bridges can live in one process.
"""

from typing import Any, Optional

import httpx

from dingtalk_bridge.auth import Credentials, TokenCache
from dingtalk_bridge.cards import CardService
from dingtalk_bridge.config import BridgeConfig
from dingtalk_bridge.media import MediaService
from dingtalk_bridge.outbound import MessageSender, OutboundTarget, SendResult, create_sender, send_message
from dingtalk_bridge.probe import ProbeResult, probe
from dingtalk_bridge.transport.http import DEFAULT_BASE_URL, HttpClient


class DingTalkClient:
    def __init__(
        self,
        config: BridgeConfig,
        base_url: str = DEFAULT_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        credentials = config.credentials()

        self.http = HttpClient(base_url=base_url, transport=transport)
        self.tokens = TokenCache(self.http, credentials)
        self.http.set_token_provider(self.tokens.get_token_value)

        self.cards = CardService(self.http, template_id=config.card_template_id)
        self.sender: MessageSender = create_sender(self.http, config.effective_robot_code, config.send_mode)
        self.media: Optional[MediaService] = (
            MediaService(self.http, self.tokens.get_token_value) if config.enable_media_upload else None
        )

    @property
    def credentials(self) -> Credentials:
        return self.tokens.credentials

    async def send(
        self,
        target: OutboundTarget,
        text: Optional[str] = None,
        markdown: Optional[dict[str, str]] = None,
        card: Optional[dict[str, Any]] = None,
    ) -> SendResult:
        return await send_message(self.sender, target, text=text, markdown=markdown, card=card)

    async def probe(self, fetch_bot_info: bool = False) -> ProbeResult:
        return await probe(self.config, fetch_bot_info=fetch_bot_info)

    async def close(self) -> None:
        await self.http.close()
