"""
Conversation history kept per session key and replayed to the agent.
"""

from typing import Literal

from pydantic import BaseModel

Role = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    role: Role
    content: str


class ConversationHistory:
    def __init__(self, limit: int = 50):
        self._limit = limit
        self._messages: dict[str, list[ChatMessage]] = {}

    def get(self, session_key: str) -> list[ChatMessage]:
        """Snapshot of the history for a session."""
        return list(self._messages.get(session_key, []))

    def append(self, session_key: str, role: Role, content: str) -> None:
        messages = self._messages.setdefault(session_key, [])
        messages.append(ChatMessage(role=role, content=content))
        if self._limit > 0 and len(messages) > self._limit:
            del messages[: len(messages) - self._limit]

    def clear(self, session_key: str) -> None:
        self._messages.pop(session_key, None)

    def __len__(self) -> int:
        return len(self._messages)
