"""Basic unit tests for the dingtalk-stream-bridge package."""

from dingtalk_bridge import (
    ApiError,
    AuthError,
    Bridge,
    BridgeError,
    ConfigError,
    ConnectTimeoutError,
    DingTalkClient,
    SocketError,
    StreamClient,
    __version__,
)
from dingtalk_bridge.chat import ERROR_MESSAGE, NEW_SESSION_MESSAGE
from dingtalk_bridge.models.envelope import BOT_MESSAGE_TOPIC, EnvelopeType


def test_version():
    assert __version__ == "0.1.0"


def test_public_exports():
    assert Bridge is not None
    assert DingTalkClient is not None
    assert StreamClient is not None


def test_error_hierarchy():
    assert issubclass(AuthError, BridgeError)
    assert issubclass(ConfigError, BridgeError)
    assert issubclass(ApiError, BridgeError)
    assert issubclass(SocketError, BridgeError)
    assert issubclass(ConnectTimeoutError, SocketError)


def test_error_attributes():
    err = BridgeError(code="test_code", message="something broke")
    assert err.code == "test_code"
    assert str(err) == "something broke"
    assert err.details is None

    api = ApiError(400, "bad request", details={"code": "invalidParameter"})
    assert api.code == "api_error"
    assert api.status_code == 400
    assert api.details == {"code": "invalidParameter"}

    assert ConnectTimeoutError("slow").code == "connect_timeout"
    assert AuthError("nope").code == "auth_error"


def test_constants():
    assert BOT_MESSAGE_TOPIC == "/v1.0/im/bot/messages/get"
    assert EnvelopeType.CALLBACK == "CALLBACK"
    assert ERROR_MESSAGE == "❌ 处理消息时出错，请稍后重试。"
    assert NEW_SESSION_MESSAGE == "✨ 已开启新会话，之前的对话已清空。"
