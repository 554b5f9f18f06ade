"""
Inbound chat messages.

The robot callback payload has several optional nested shapes depending on
``msgtype``. It is decoded once into a MessageContext carrying a tagged
content union; nothing downstream looks at the raw payload again.
"""

import time
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dingtalk_bridge.targets import normalize_target


class ConversationType(str, Enum):
    DM = "1"
    GROUP = "2"


class TextContent(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class MarkdownContent(BaseModel):
    kind: Literal["markdown"] = "markdown"
    title: str = ""
    text: str


MessageContent = Annotated[Union[TextContent, MarkdownContent], Field(discriminator="kind")]


class AtUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    dingtalk_id: str = Field(default="", alias="dingtalkId")
    staff_id: Optional[str] = Field(default=None, alias="staffId")


class ChatbotMessage(BaseModel):
    """Raw robot callback payload (``/v1.0/im/bot/messages/get``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    conversation_id: str = Field(default="", alias="conversationId")
    conversation_type: str = Field(default="1", alias="conversationType")
    conversation_title: Optional[str] = Field(default=None, alias="conversationTitle")
    chatbot_user_id: Optional[str] = Field(default=None, alias="chatbotUserId")
    sender_id: str = Field(default="", alias="senderId")
    sender_nick: str = Field(default="", alias="senderNick")
    sender_staff_id: Optional[str] = Field(default=None, alias="senderStaffId")
    msg_id: str = Field(default="", alias="msgId")
    msgtype: str = "text"
    create_at: Optional[int] = Field(default=None, alias="createAt")
    text: Any = None
    markdown: Any = None
    content: Any = None
    is_in_at_list: Optional[bool] = Field(default=None, alias="isInAtList")
    mentioned_bot: Optional[bool] = Field(default=None, alias="mentionedBot")
    at_users: list[AtUser] = Field(default_factory=list, alias="atUsers")
    session_webhook: Optional[str] = Field(default=None, alias="sessionWebhook")
    robot_code: Optional[str] = Field(default=None, alias="robotCode")


class MessageContext(BaseModel):
    conversation_id: str
    conversation_type: ConversationType
    sender_id: str
    sender_nick: str = ""
    sender_staff_id: Optional[str] = None
    msg_id: str = ""
    body: MessageContent
    mentioned_bot: bool = False
    conversation_title: Optional[str] = None
    created_at: int
    session_webhook: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return self.conversation_type == ConversationType.GROUP

    @property
    def content(self) -> str:
        return self.body.text


class InboundMessage(BaseModel):
    """Shape handed to the upstream agent for one turn."""

    conversation_id: str
    conversation_type: ConversationType
    sender_id: str
    sender_name: str
    message_id: str
    text: str
    timestamp: int


def _decode_content(msg: ChatbotMessage) -> Optional[Union[TextContent, MarkdownContent]]:
    if msg.msgtype == "text":
        if isinstance(msg.text, dict) and isinstance(msg.text.get("content"), str):
            return TextContent(text=msg.text["content"].strip())
        if isinstance(msg.content, str):
            return TextContent(text=msg.content.strip())
        if isinstance(msg.content, dict) and isinstance(msg.content.get("text"), str):
            return TextContent(text=msg.content["text"].strip())
        return None
    if msg.msgtype == "markdown":
        md = msg.markdown
        if md is None and isinstance(msg.content, dict):
            md = msg.content.get("markdown")
        if isinstance(md, dict) and isinstance(md.get("text"), str):
            return MarkdownContent(title=md.get("title") or "", text=md["text"].strip())
        if isinstance(md, str):
            return MarkdownContent(text=md.strip())
        return None
    return None


def decode_message(payload: Any) -> Optional[MessageContext]:
    """Decode a robot callback payload. Returns None for unsupported or malformed content."""
    if not isinstance(payload, dict):
        return None
    try:
        msg = ChatbotMessage.model_validate(payload)
    except ValidationError:
        return None
    body = _decode_content(msg)
    if body is None:
        return None
    try:
        conversation_type = ConversationType(msg.conversation_type)
    except ValueError:
        return None

    mentioned = bool(msg.is_in_at_list or msg.mentioned_bot)
    if not mentioned and msg.chatbot_user_id:
        mentioned = any(u.dingtalk_id == msg.chatbot_user_id for u in msg.at_users)

    return MessageContext(
        conversation_id=normalize_target(msg.conversation_id),
        conversation_type=conversation_type,
        sender_id=msg.sender_id,
        sender_nick=msg.sender_nick,
        sender_staff_id=msg.sender_staff_id,
        msg_id=msg.msg_id,
        body=body,
        mentioned_bot=mentioned,
        conversation_title=msg.conversation_title,
        created_at=msg.create_at or int(time.time() * 1000),
        session_webhook=msg.session_webhook,
    )


def to_inbound(ctx: MessageContext) -> InboundMessage:
    return InboundMessage(
        conversation_id=ctx.conversation_id,
        conversation_type=ctx.conversation_type,
        sender_id=ctx.sender_id,
        sender_name=ctx.sender_nick,
        message_id=ctx.msg_id,
        text=ctx.content,
        timestamp=ctx.created_at,
    )
