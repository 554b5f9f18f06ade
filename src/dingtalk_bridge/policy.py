"""
Inbound admission policy.

Rejections are silent towards the user; the caller logs the reason.
"""

from typing import Optional

from pydantic import BaseModel

from dingtalk_bridge.config import PolicyConfig
from dingtalk_bridge.models.message import MessageContext
from dingtalk_bridge.targets import normalize_allow_entry, normalize_target


class PolicyDecision(BaseModel):
    admitted: bool
    reason: Optional[str] = None

    @classmethod
    def admit(cls) -> "PolicyDecision":
        return cls(admitted=True)

    @classmethod
    def reject(cls, reason: str) -> "PolicyDecision":
        return cls(admitted=False, reason=reason)


def evaluate_policy(ctx: MessageContext, policy: PolicyConfig) -> PolicyDecision:
    if not ctx.is_group:
        if policy.dm_policy == "disabled":
            return PolicyDecision.reject("direct messages disabled")
        if policy.dm_policy == "allowlist":
            allowed = {normalize_allow_entry(e) for e in policy.allow_from}
            if normalize_allow_entry(ctx.sender_id) not in allowed:
                return PolicyDecision.reject(f"sender {ctx.sender_id} not in allowlist")
        # open and pairing admit; pairing approval happens in the host
        return PolicyDecision.admit()

    if policy.group_policy == "disabled":
        return PolicyDecision.reject("group messages disabled")
    if policy.group_policy == "allowlist":
        allowed = {normalize_target(str(e)) for e in policy.group_allow_from}
        if normalize_target(ctx.conversation_id) not in allowed:
            return PolicyDecision.reject(f"group {ctx.conversation_id} not in allowlist")
    if policy.require_mention and not ctx.mentioned_bot:
        return PolicyDecision.reject("bot not mentioned")
    return PolicyDecision.admit()
