"""
Connectivity probe: verifies credentials without touching conversation state.
"""

from typing import Optional

import httpx
from pydantic import BaseModel

from dingtalk_bridge.auth import exchange_token
from dingtalk_bridge.config import BridgeConfig
from dingtalk_bridge.errors import ApiError, ConfigError
from dingtalk_bridge.transport.http import HttpClient

BOT_INFO_PATH = "/v1.0/robot/info"


class ProbeResult(BaseModel):
    ok: bool
    error: Optional[str] = None
    app_key: Optional[str] = None
    bot_name: Optional[str] = None
    bot_user_id: Optional[str] = None


def _api_error_message(e: ApiError) -> str:
    if e.status_code == 401:
        return "Authentication failed: invalid appKey or appSecret"
    message = (e.details or {}).get("errorMessage") or (e.details or {}).get("message") or str(e)
    return f"API error ({e.status_code}): {message}"


async def probe(
    config: BridgeConfig,
    http: Optional[HttpClient] = None,
    fetch_bot_info: bool = False,
) -> ProbeResult:
    """Exchange credentials for a token, optionally reading bot info with it."""
    try:
        creds = config.credentials()
    except ConfigError:
        return ProbeResult(ok=False, error="missing credentials (appKey, appSecret)")

    own_http = http is None
    client = http or HttpClient(timeout=10.0)
    try:
        try:
            result = await exchange_token(client, creds)
        except ApiError as e:
            return ProbeResult(ok=False, app_key=creds.app_key, error=_api_error_message(e))
        except httpx.HTTPError as e:
            return ProbeResult(ok=False, app_key=creds.app_key, error=str(e) or type(e).__name__)

        token = result.get("accessToken") if isinstance(result, dict) else None
        if not token:
            return ProbeResult(ok=False, app_key=creds.app_key, error="Invalid response from OAuth endpoint")

        probe_result = ProbeResult(ok=True, app_key=creds.app_key)
        if fetch_bot_info:
            await _fill_bot_info(client, token, config.effective_robot_code, probe_result)
        return probe_result
    finally:
        if own_http:
            await client.close()


async def _fill_bot_info(client: HttpClient, token: str, robot_code: str, result: ProbeResult) -> None:
    async def provider() -> str:
        return token

    previous = client.token_provider
    client.set_token_provider(provider)
    try:
        info = await client.get(BOT_INFO_PATH, query={"robotCode": robot_code})
    except ApiError as e:
        result.ok = False
        result.error = _api_error_message(e)
        return
    except httpx.HTTPError as e:
        result.ok = False
        result.error = str(e) or type(e).__name__
        return
    finally:
        client.set_token_provider(previous)
    if isinstance(info, dict):
        bot = info.get("result") if isinstance(info.get("result"), dict) else info
        result.bot_name = bot.get("name") or bot.get("robotName")
        result.bot_user_id = bot.get("userId") or bot.get("robotUserId")
