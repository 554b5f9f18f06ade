"""
dingtalk-stream-bridge: DingTalk robot messages to a streaming AI agent.

Stream gateway WebSocket in, AI card streaming (or plain messages) out.
"""

from dingtalk_bridge.bridge import Bridge, monitor
from dingtalk_bridge.client import DingTalkClient
from dingtalk_bridge.config import BridgeConfig, load_config
from dingtalk_bridge.errors import (
    ApiError,
    AuthError,
    BridgeError,
    ConfigError,
    ConnectTimeoutError,
    SocketError,
)
from dingtalk_bridge.gateway import AgentGateway, OpenClawGateway
from dingtalk_bridge.probe import ProbeResult, probe
from dingtalk_bridge.sessions import SessionManager
from dingtalk_bridge.targets import looks_like_id, normalize_target
from dingtalk_bridge.transport.stream import ConnectionState, StreamClient

__version__ = "0.1.0"
__all__ = [
    "Bridge",
    "monitor",
    "DingTalkClient",
    "BridgeConfig",
    "load_config",
    "BridgeError",
    "AuthError",
    "ApiError",
    "ConfigError",
    "ConnectTimeoutError",
    "SocketError",
    "AgentGateway",
    "OpenClawGateway",
    "ProbeResult",
    "probe",
    "SessionManager",
    "normalize_target",
    "looks_like_id",
    "ConnectionState",
    "StreamClient",
]
