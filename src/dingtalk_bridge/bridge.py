"""
Bridge orchestrator: stream connection in, agent reply turns out.

Inbound robot messages are decoded, checked against the access policy,
mapped to a session and handed to the agent. Each reply turn runs as its
own task so a slow turn never holds up the socket reader; the reader itself
stays sequential.
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional

from dingtalk_bridge.chat import NEW_SESSION_MESSAGE, ReplyStreamer
from dingtalk_bridge.client import DingTalkClient
from dingtalk_bridge.config import BridgeConfig
from dingtalk_bridge.gateway import AgentGateway
from dingtalk_bridge.history import ConversationHistory
from dingtalk_bridge.media import build_media_system_prompt
from dingtalk_bridge.models.envelope import BOT_MESSAGE_TOPIC, StreamEnvelope
from dingtalk_bridge.models.message import MessageContext, decode_message, to_inbound
from dingtalk_bridge.models.session import SessionInfo
from dingtalk_bridge.outbound import OutboundTarget
from dingtalk_bridge.policy import evaluate_policy
from dingtalk_bridge.sessions import SessionManager
from dingtalk_bridge.transport.stream import StreamClient

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_GRACE = 10.0


def target_for(ctx: MessageContext) -> OutboundTarget:
    return OutboundTarget(
        conversation_id=ctx.conversation_id,
        is_group=ctx.is_group,
        user_id=ctx.sender_staff_id or ctx.sender_id,
        session_webhook=ctx.session_webhook,
    )


class Bridge:
    def __init__(
        self,
        config: BridgeConfig,
        agent: AgentGateway,
        client: Optional[DingTalkClient] = None,
        stream: Optional[StreamClient] = None,
    ):
        self.config = config
        self.client = client or DingTalkClient(config)
        self.stream = stream or StreamClient(self.client.http, self.client.credentials, reconnect=config.reconnect)
        self.sessions = SessionManager(timeout=config.session_timeout)
        self.history = ConversationHistory(limit=config.history_limit)
        self.replies = ReplyStreamer(
            self.client.cards,
            self.client.sender,
            self.history,
            update_interval=config.update_interval,
            media=self.client.media,
        )
        self._agent = agent
        self._system_prompt = self._build_system_prompt()
        self._turns: set[asyncio.Task[Any]] = set()

    @property
    def active_turns(self) -> int:
        return len(self._turns)

    def _build_system_prompt(self) -> Optional[str]:
        parts: list[str] = []
        if self.config.system_prompt:
            parts.append(self.config.system_prompt)
        if self.config.enable_media_upload:
            parts.append(build_media_system_prompt())
        return "\n\n".join(parts) or None

    async def start(self) -> None:
        """Fetch a token (AuthError surfaces here), register handlers and connect."""
        logger.info(
            "Starting DingTalk bridge (gateway=%s, session_timeout=%ss, media=%s, dm=%s, group=%s)",
            self.config.gateway.url,
            self.config.session_timeout,
            self.config.enable_media_upload,
            self.config.policy.dm_policy,
            self.config.policy.group_policy,
        )
        await self.client.tokens.get_token()
        self.stream.on_message(BOT_MESSAGE_TOPIC, self._on_bot_message)
        await self.stream.connect()
        logger.info("DingTalk bridge is running")

    async def _on_bot_message(self, envelope: StreamEnvelope) -> None:
        await self.handle_payload(envelope.payload())

    async def handle_payload(self, payload: Any) -> Optional[asyncio.Task[Any]]:
        """Admit one inbound robot message and start its reply turn. Returns the turn task."""
        ctx = decode_message(payload)
        if ctx is None:
            logger.debug("Ignoring unsupported or malformed robot message")
            return None

        decision = evaluate_policy(ctx, self.config.policy)
        if not decision.admitted:
            logger.info("Ignoring message from %s in %s: %s", ctx.sender_id, ctx.conversation_id, decision.reason)
            return None
        if not ctx.content:
            logger.debug("Ignoring empty message %s", ctx.msg_id)
            return None

        target = target_for(ctx)
        if SessionManager.is_new_session_command(ctx.content):
            info = self.sessions.resolve(ctx.sender_id, force_new=True)
            self._drop_history(info)
            logger.info("New session for %s: %s", ctx.sender_id, info.session_key)
            return self._spawn(self.replies.reply_once(target, NEW_SESSION_MESSAGE))

        info = self.sessions.resolve(ctx.sender_id)
        self._drop_history(info)
        self.history.append(info.session_key, "user", ctx.content)

        logger.info(
            "Processing message from %s (%s), session: %s, new: %s",
            ctx.sender_nick, ctx.sender_id, info.session_key, info.is_new,
        )
        return self._spawn(self._run_turn(ctx, target, info.session_key))

    def _drop_history(self, info: SessionInfo) -> None:
        if info.previous_key:
            self.history.clear(info.previous_key)
        if info.is_new:
            self.history.clear(info.session_key)

    async def _run_turn(self, ctx: MessageContext, target: OutboundTarget, session_key: str) -> None:
        chunks = self._agent.stream_chat(
            self.history.get(session_key),
            session_key,
            self._system_prompt,
            inbound=to_inbound(ctx),
        )
        await self.replies.run(target, session_key, chunks)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._turns.add(task)
        task.add_done_callback(self._turn_done)
        return task

    def _turn_done(self, task: asyncio.Task[Any]) -> None:
        self._turns.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Reply turn failed", exc_info=task.exception())

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight turns. Returns False if some are still running after ``timeout``."""
        if not self._turns:
            return True
        _, pending = await asyncio.wait(set(self._turns), timeout=timeout)
        return not pending

    async def stop(self, grace: float = DEFAULT_SHUTDOWN_GRACE) -> None:
        """Close the stream, let in-flight turns finish up to ``grace`` seconds, then cancel the rest."""
        logger.info("Stopping DingTalk bridge")
        await self.stream.disconnect()
        if not await self.drain(grace):
            pending = list(self._turns)
            logger.warning("Cancelling %d reply turns still running after %ss", len(pending), grace)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        await self.client.close()
        logger.info("Bridge stopped")


async def monitor(
    config: BridgeConfig,
    agent: AgentGateway,
    stop_event: asyncio.Event,
    bridge: Optional[Bridge] = None,
    grace: float = DEFAULT_SHUTDOWN_GRACE,
) -> None:
    """Run one bridge until ``stop_event`` is set.

    Startup failures (ConfigError, AuthError, SocketError) propagate. If the
    stream gives up reconnecting the bridge stays inert until stopped.
    """
    bridge = bridge or Bridge(config, agent)
    logger.info("DingTalk monitor starting")
    try:
        await bridge.start()
        await stop_event.wait()
        logger.info("Stop requested, shutting down")
    finally:
        await bridge.stop(grace)
