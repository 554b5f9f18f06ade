"""
Per-sender session models.
"""

from typing import Optional

from pydantic import BaseModel


class UserSession(BaseModel):
    session_id: str  # "dingtalk:{senderId}" or "dingtalk:{senderId}:{epoch_ms}"
    last_activity: float


class SessionInfo(BaseModel):
    session_key: str
    is_new: bool
    previous_key: Optional[str] = None  # key this one replaced, if any
