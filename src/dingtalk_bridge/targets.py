"""
Conversation identifier helpers.

Targets arrive prefixed (``dingtalk:cid...``, ``conv:...``) from the host
and raw from the platform; policy checks and sends compare the bare form.
"""

import re
from typing import Literal, Optional

from pydantic import BaseModel

_TARGET_PREFIX_RE = re.compile(r"^(?:dingtalk|conversation|conv):", re.IGNORECASE)
_ALLOW_ENTRY_PREFIX_RE = re.compile(r"^(?:dingtalk|userId|user):", re.IGNORECASE)
_CID_RE = re.compile(r"^cid[a-zA-Z0-9]+$")
_BARE_ID_RE = re.compile(r"^[a-zA-Z0-9]{10,}$")


class Target(BaseModel):
    conversation_id: str
    conversation_type: Literal["1", "2"] = "1"

    @property
    def is_group(self) -> bool:
        return self.conversation_type == "2"


def normalize_target(raw: str) -> str:
    """Strip recognised scheme prefixes. Idempotent."""
    if not raw:
        return raw
    normalized = raw.strip()
    while True:
        stripped = _TARGET_PREFIX_RE.sub("", normalized, count=1)
        if stripped == normalized:
            return normalized
        normalized = stripped


def format_target(conversation_id: str) -> str:
    return normalize_target(conversation_id)


def normalize_allow_entry(entry: object) -> str:
    """Normalise a DM allow-list entry (may be a number in config)."""
    return _ALLOW_ENTRY_PREFIX_RE.sub("", str(entry).strip())


def looks_like_id(value: str) -> bool:
    """True for ``cid...`` conversation ids or long bare alphanumeric ids."""
    if not value:
        return False
    return bool(_CID_RE.match(value) or _BARE_ID_RE.match(value))


def build_target(conversation_id: str, conversation_type: Optional[Literal["1", "2"]] = None) -> Target:
    return Target(
        conversation_id=normalize_target(conversation_id),
        conversation_type=conversation_type or "1",
    )


def parse_target(raw: str) -> Optional[Target]:
    """Parse a target string. Returns None if it does not look like an id; defaults to DM."""
    normalized = normalize_target(raw)
    if not looks_like_id(normalized):
        return None
    return Target(conversation_id=normalized, conversation_type="1")
