"""
AI card models.
"""

import asyncio

from pydantic import BaseModel, PrivateAttr


class CardStatus:
    PROCESSING = "1"
    INPUTING = "2"
    FINISHED = "3"
    EXECUTING = "4"
    FAILED = "5"


class CardInstance(BaseModel):
    card_instance_id: str
    inputing_started: bool = False
    finalized: bool = False

    # Serialises update calls on one card
    _lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock
