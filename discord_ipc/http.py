"""HTTP client for the Discord REST API."""

from __future__ import annotations

from typing import Any

import aiohttp

from .config import DEFAULT_API_BASE
from .errors import (
    DiscordConnectionError,
    DiscordResponseError,
    DiscordTimeout,
)

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class DiscordHttpClient:
    """HTTP client wrapper for the OAuth2 and REST endpoints."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        api_base: str = DEFAULT_API_BASE,
        token: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._api_base = api_base.rstrip("/")
        self._token = token
        self._timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self._api_base}{path}"

    def _auth_headers(self, token: str | None = None) -> dict[str, str]:
        token = token or self._token
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    async def _read_body(resp: aiohttp.ClientResponse) -> Any:
        try:
            return await resp.json(content_type=None)
        except ValueError:
            return await resp.text()

    async def request(
        self,
        method: str,
        path: str,
        *,
        query: dict[str, str] | None = None,
        data: Any = None,
        headers: dict[str, str] | None = None,
        token: str | None = None,
    ) -> Any:
        """Perform an API call and return the decoded JSON body.

        Raises:
            DiscordResponseError: On a non-2xx response.
            DiscordTimeout: If the request times out.
            DiscordConnectionError: If the request fails at the network level.
        """
        request_headers = {**self._auth_headers(token), **(headers or {})}
        try:
            async with self._session.request(
                method,
                self._url(path),
                params=query,
                data=data,
                headers=request_headers,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                body = await self._read_body(resp)
                if not 200 <= resp.status < 300:
                    raise DiscordResponseError(
                        resp.status,
                        f"{method} {path} failed with status {resp.status}",
                        body,
                    )
                return body
        except TimeoutError as err:
            raise DiscordTimeout(f"{method} {path} timed out") from err
        except aiohttp.ClientError as err:
            raise DiscordConnectionError(f"{method} {path} failed") from err

    async def exchange_code(
        self,
        code: str,
        *,
        client_id: str,
        client_secret: str | None,
        redirect_uri: str | None,
    ) -> str:
        """Exchange an authorization code for an access token.

        The body is form-encoded as the token endpoint requires.

        Raises:
            DiscordResponseError: On a non-2xx response or a body without
                ``access_token``.
            DiscordTimeout: If the request times out.
            DiscordConnectionError: If the request fails at the network level.
        """
        form = {
            "client_id": client_id,
            "client_secret": client_secret or "",
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri or "",
        }
        body = await self.request(
            "POST",
            "/oauth2/token",
            data=form,
            headers={"Content-Type": _FORM_CONTENT_TYPE},
        )
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise DiscordResponseError(200, "Token response has no access_token", body)
        return token

    async def fetch_authorization_info(self, token: str | None = None) -> dict[str, Any]:
        """Validate an access token via /oauth2/@me."""
        return await self.request("GET", "/oauth2/@me", token=token)
