"""
Bridge configuration.

Config is read from a JSON file (either flat or nested under
``channels.dingtalk`` as the host framework lays it out) and overridden by
environment variables. Keys are accepted in camelCase or snake_case.
"""

import json
import os
from pathlib import Path
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from dingtalk_bridge.auth import Credentials
from dingtalk_bridge.errors import ConfigError

CONFIG_FILE = Path.home() / ".dingtalk-bridge" / "config.json"
DEFAULT_CARD_TEMPLATE_ID = "382e4302-551d-4880-bf29-a30acfab2e71.schema"

DmPolicy = Literal["open", "pairing", "allowlist", "disabled"]
GroupPolicy = Literal["open", "allowlist", "disabled"]
SendMode = Literal["openapi", "webhook"]


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReconnectPolicy(_Model):
    base_delay: float = 2.0
    factor: float = 1.5
    max_multiplier: float = 2.0
    max_attempts: int = 10

    def delay(self, attempt: int) -> float:
        """Backoff before the given 1-based attempt; never decreases."""
        return self.base_delay * min(self.max_multiplier, self.factor ** max(attempt - 1, 0))


class GatewayConfig(_Model):
    url: str = "http://127.0.0.1:18789"
    token: Optional[str] = None
    password: Optional[str] = None


class PolicyConfig(_Model):
    dm_policy: DmPolicy = "open"
    allow_from: list[str] = Field(default_factory=list)
    group_policy: GroupPolicy = "open"
    group_allow_from: list[str] = Field(default_factory=list)
    require_mention: bool = False

    @field_validator("allow_from", "group_allow_from", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, list):
            return [str(v).strip() for v in value if str(v).strip()]
        return value


class BridgeConfig(_Model):
    app_key: str = ""
    app_secret: str = ""
    robot_code: Optional[str] = None
    session_timeout: float = 1800.0
    enable_media_upload: bool = True
    system_prompt: Optional[str] = None
    debug: bool = False
    send_mode: SendMode = "openapi"
    card_template_id: str = DEFAULT_CARD_TEMPLATE_ID
    update_interval: float = 0.3
    history_limit: int = 50
    reconnect: ReconnectPolicy = Field(default_factory=ReconnectPolicy)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)

    def credentials(self) -> Credentials:
        if not self.app_key or not self.app_secret:
            raise ConfigError("DingTalk credentials not configured (appKey, appSecret required)")
        return Credentials(app_key=self.app_key, app_secret=self.app_secret)

    @property
    def effective_robot_code(self) -> str:
        return self.robot_code or self.app_key

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "BridgeConfig":
        section = data.get("channels", {}).get("dingtalk") if isinstance(data.get("channels"), dict) else None
        raw = dict(section if section is not None else data)
        # The host keeps policy and gateway keys flat; fold them into sections.
        for key in ("dmPolicy", "allowFrom", "groupPolicy", "groupAllowFrom", "requireMention"):
            if key in raw:
                raw.setdefault("policy", {})[key] = raw.pop(key)
        for flat, nested in (("gatewayUrl", "url"), ("gatewayToken", "token"), ("gatewayPassword", "password")):
            if flat in raw:
                raw.setdefault("gateway", {})[nested] = raw.pop(flat)
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}")

    @classmethod
    def from_env(cls, base: Optional["BridgeConfig"] = None) -> "BridgeConfig":
        return cls.from_mapping(_merge(base.model_dump(by_alias=True) if base else {}, _env_overrides(os.environ)))

    def masked(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True)
        for key in ("appSecret",):
            if data.get(key):
                data[key] = "***"
        for key in ("token", "password"):
            if data["gateway"].get(key):
                data["gateway"][key] = "***"
        return data


def _bool(value: str) -> bool:
    return value.strip().lower() not in ("false", "0", "no", "off", "")


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    simple = {
        "DINGTALK_APP_KEY": "appKey",
        "DINGTALK_APP_SECRET": "appSecret",
        "DINGTALK_ROBOT_CODE": "robotCode",
        "SYSTEM_PROMPT": "systemPrompt",
        "SEND_MODE": "sendMode",
    }
    for var, key in simple.items():
        if env.get(var):
            out[key] = env[var]
    if env.get("SESSION_TIMEOUT"):
        # Milliseconds, matching the host's convention
        out["sessionTimeout"] = float(env["SESSION_TIMEOUT"]) / 1000.0
    if env.get("ENABLE_MEDIA_UPLOAD"):
        out["enableMediaUpload"] = _bool(env["ENABLE_MEDIA_UPLOAD"])
    if env.get("DEBUG"):
        out["debug"] = _bool(env["DEBUG"])

    policy: dict[str, Any] = {}
    for var, key in (("DM_POLICY", "dmPolicy"), ("GROUP_POLICY", "groupPolicy"),
                     ("ALLOW_FROM", "allowFrom"), ("GROUP_ALLOW_FROM", "groupAllowFrom")):
        if env.get(var):
            policy[key] = env[var]
    if env.get("REQUIRE_MENTION"):
        policy["requireMention"] = _bool(env["REQUIRE_MENTION"])
    if policy:
        out["policy"] = policy

    gateway: dict[str, Any] = {}
    for var, key in (("GATEWAY_URL", "url"), ("GATEWAY_TOKEN", "token"), ("GATEWAY_PASSWORD", "password")):
        if env.get(var):
            gateway[key] = env[var]
    if gateway:
        out["gateway"] = gateway
    return out


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[Path] = None, use_env: bool = True) -> BridgeConfig:
    """Load the config file (missing file means defaults) and apply env overrides."""
    config_path = path or CONFIG_FILE
    try:
        data = json.loads(config_path.read_text())
    except FileNotFoundError:
        data = {}
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {config_path} is not valid JSON: {e}")
    config = BridgeConfig.from_mapping(data)
    return BridgeConfig.from_env(config) if use_env else config
