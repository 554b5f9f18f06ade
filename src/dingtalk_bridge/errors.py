"""
DingTalk bridge error types.

Socket-level errors are recoverable through reconnection; AuthError and
ConfigError raised at startup need operator intervention.
"""

from typing import Any, Optional


class BridgeError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class AuthError(BridgeError):
    def __init__(self, message: str, code: str = "auth_error"):
        super().__init__(code, message)


class ConfigError(BridgeError):
    def __init__(self, message: str):
        super().__init__("config_error", message)


class ApiError(BridgeError):
    """Non-2xx response from the DingTalk OpenAPI or the agent gateway."""

    def __init__(self, status_code: int, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("api_error", message, details)
        self.status_code = status_code


class SocketError(BridgeError):
    def __init__(self, message: str, code: str = "socket_error"):
        super().__init__(code, message)


class ConnectTimeoutError(SocketError):
    def __init__(self, message: str):
        super().__init__(message, code="connect_timeout")
