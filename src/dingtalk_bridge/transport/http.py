"""
REST HTTP client for the DingTalk OpenAPI.

Authenticated calls carry the access token in the
``x-acs-dingtalk-access-token`` header. No retries happen here; callers
decide what is retryable.
"""

from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import httpx

from dingtalk_bridge.errors import ApiError

DEFAULT_BASE_URL = "https://api.dingtalk.com"
TOKEN_HEADER = "x-acs-dingtalk-access-token"

TokenProvider = Callable[[], Awaitable[str]]


class HttpClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": "dingtalk-stream-bridge/0.1.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def token_provider(self) -> Optional[TokenProvider]:
        return self._token_provider

    def set_token_provider(self, provider: Optional[TokenProvider]) -> None:
        self._token_provider = provider

    async def _headers(self, authenticated: bool) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if authenticated:
            if self._token_provider is None:
                raise RuntimeError("Authenticated call made without a token provider")
            headers[TOKEN_HEADER] = await self._token_provider()
        return headers

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        message = resp.text[:200]
        details: Optional[dict[str, Any]] = None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            details = body
            message = body.get("message") or body.get("errorMessage") or message
        raise ApiError(resp.status_code, f"HTTP {resp.status_code}: {message}", details)

    @staticmethod
    def _decode(resp: httpx.Response) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return resp.text

    async def call(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        query: Optional[dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        """Make one JSON request and return the decoded body."""
        resp = await self._client.request(
            method,
            path,
            json=body,
            params=query,
            headers=await self._headers(authenticated),
        )
        self._raise_for_status(resp)
        return self._decode(resp)

    async def get(self, path: str, query: Optional[dict[str, Any]] = None, authenticated: bool = True) -> Any:
        return await self.call("GET", path, query=query, authenticated=authenticated)

    async def post(self, path: str, body: Optional[dict[str, Any]] = None, authenticated: bool = True) -> Any:
        return await self.call("POST", path, body, authenticated=authenticated)

    async def put(self, path: str, body: Optional[dict[str, Any]] = None, authenticated: bool = True) -> Any:
        return await self.call("PUT", path, body, authenticated=authenticated)

    async def delete(self, path: str, query: Optional[dict[str, Any]] = None, authenticated: bool = True) -> Any:
        return await self.call("DELETE", path, query=query, authenticated=authenticated)

    async def post_url(self, url: str, body: dict[str, Any]) -> Any:
        """POST to an absolute URL outside the OpenAPI host (session webhooks)."""
        return await self.call("POST", url, body, authenticated=False)

    async def upload(self, url: str, file_path: str, field: str = "media", content_type: str = "image/jpeg") -> Any:
        """Multipart upload of a local file to an absolute URL."""
        path = Path(file_path)
        with path.open("rb") as fh:
            resp = await self._client.post(url, files={field: (path.name, fh, content_type)})
        self._raise_for_status(resp)
        return self._decode(resp)

    async def register_connection(
        self,
        client_id: str,
        client_secret: str,
        subscriptions: list[dict[str, str]],
        ua: str,
    ) -> dict[str, str]:
        """Open a stream gateway connection and return its endpoint and ticket."""
        result = await self.post(
            "/v1.0/gateway/connections/open",
            {
                "clientId": client_id,
                "clientSecret": client_secret,
                "subscriptions": subscriptions,
                "ua": ua,
            },
            authenticated=False,
        )
        return {"endpoint": result["endpoint"], "ticket": result["ticket"]}

    async def close(self) -> None:
        await self._client.aclose()
