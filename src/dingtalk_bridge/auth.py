"""
Access token cache.

Exchanges the app credential pair for an access token and keeps it until
shortly before it expires. Concurrent callers during a refresh share a
single exchange.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx
from pydantic import BaseModel

from dingtalk_bridge.errors import ApiError, AuthError
from dingtalk_bridge.transport.http import HttpClient

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v1.0/oauth2/accessToken"
MIN_SAFETY_MARGIN = 60.0


class Credentials(BaseModel):
    app_key: str
    app_secret: str


class AccessToken(BaseModel):
    value: str
    expires_at: float

    def valid_at(self, now: float, margin: float) -> bool:
        return now < self.expires_at - margin


async def exchange_token(http: HttpClient, credentials: Credentials) -> dict:
    """Raw credential exchange; raises ApiError / httpx errors untouched."""
    return await http.post(
        TOKEN_PATH,
        {"appKey": credentials.app_key, "appSecret": credentials.app_secret},
        authenticated=False,
    )


class TokenCache:
    def __init__(
        self,
        http: HttpClient,
        credentials: Credentials,
        safety_margin: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self._http = http
        self._credentials = credentials
        self._margin = max(safety_margin, MIN_SAFETY_MARGIN)
        self._clock = clock
        self._token: Optional[AccessToken] = None
        self._lock = asyncio.Lock()

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    async def get_token(self) -> AccessToken:
        token = self._token
        if token is not None and token.valid_at(self._clock(), self._margin):
            return token
        async with self._lock:
            # Another caller may have refreshed while we waited on the lock
            token = self._token
            if token is not None and token.valid_at(self._clock(), self._margin):
                return token
            self._token = await self._refresh()
            return self._token

    async def get_token_value(self) -> str:
        return (await self.get_token()).value

    def invalidate(self) -> None:
        self._token = None

    async def _refresh(self) -> AccessToken:
        try:
            result = await exchange_token(self._http, self._credentials)
        except (ApiError, httpx.HTTPError) as e:
            raise AuthError(f"Failed to get access token: {e}")
        if not isinstance(result, dict) or not result.get("accessToken"):
            raise AuthError("Failed to get access token: no accessToken in response")
        expire_in = float(result.get("expireIn") or 7200)
        logger.debug("Refreshed access token, expires in %ss", expire_in)
        return AccessToken(value=result["accessToken"], expires_at=self._clock() + expire_in)
