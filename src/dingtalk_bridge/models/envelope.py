"""
Stream gateway envelopes exchanged over the WebSocket.
"""

import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class EnvelopeType(str, Enum):
    SYSTEM = "SYSTEM"
    EVENT = "EVENT"
    CALLBACK = "CALLBACK"


class SystemTopic:
    PING = "ping"
    DISCONNECT = "disconnect"


BOT_MESSAGE_TOPIC = "/v1.0/im/bot/messages/get"
EVENT_TOPIC_WILDCARD = "*"


class EnvelopeHeaders(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    topic: str = ""
    message_id: str = Field(alias="messageId")
    content_type: str = Field(default="application/json", alias="contentType")
    time: Optional[str] = None
    app_id: Optional[str] = Field(default=None, alias="appId")
    event_type: Optional[str] = Field(default=None, alias="eventType")
    event_id: Optional[str] = Field(default=None, alias="eventId")


class StreamEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    spec_version: Optional[str] = Field(default=None, alias="specVersion")
    type: EnvelopeType
    headers: EnvelopeHeaders
    data: str = ""

    @property
    def topic(self) -> str:
        return self.headers.topic

    @property
    def message_id(self) -> str:
        return self.headers.message_id

    def payload(self) -> Any:
        """Decode the JSON-encoded ``data`` field. Returns None if it is not JSON."""
        if not self.data:
            return None
        try:
            return json.loads(self.data)
        except json.JSONDecodeError:
            return None


class AckHeaders(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(alias="messageId")
    content_type: str = Field(default="application/json", alias="contentType")


class AckEnvelope(BaseModel):
    code: int = 200
    message: str = "OK"
    headers: AckHeaders
    data: str
