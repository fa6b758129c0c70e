"""Access-token refresh against each platform's OAuth endpoint."""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from catalogsync.errors import AuthFailure
from catalogsync.utils.retry import retry_async

logger = logging.getLogger(__name__)

PINTEREST_TOKEN_URL = "https://api.pinterest.com/v5/oauth/token"
TIKTOK_TOKEN_URL = "https://open-api.tiktokglobalshop.com/api/token/refresh/v1"


@dataclass(slots=True)
class TokenGrant:
    access_token: str
    refresh_token: str | None = None


async def refresh_pinterest(session: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    client_id = os.environ.get("PINTEREST_CLIENT_ID")
    client_secret = os.environ.get("PINTEREST_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise AuthFailure("PINTEREST_CLIENT_ID and PINTEREST_CLIENT_SECRET are required to refresh tokens")
    response = await retry_async(session.post)(
        PINTEREST_TOKEN_URL,
        data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        auth=(client_id, client_secret),
    )
    if not response.is_success:
        raise AuthFailure(f"pinterest refresh rejected: HTTP {response.status_code}")
    data = response.json()
    if not data.get("access_token"):
        raise AuthFailure("pinterest refresh returned no access token")
    return TokenGrant(access_token=data["access_token"], refresh_token=data.get("refresh_token"))


async def refresh_tiktok(session: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    app_key = os.environ.get("TIKTOK_APP_KEY")
    app_secret = os.environ.get("TIKTOK_APP_SECRET")
    if not app_key or not app_secret:
        raise AuthFailure("TIKTOK_APP_KEY and TIKTOK_APP_SECRET are required to refresh tokens")
    response = await retry_async(session.post)(
        TIKTOK_TOKEN_URL,
        json={
            "app_key": app_key,
            "app_secret": app_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        },
    )
    data = response.json() if response.is_success else {}
    token = (data.get("data") or {}).get("access_token")
    if data.get("code") != 0 or not token:
        raise AuthFailure(f"tiktok refresh rejected: {data.get('message') or response.status_code}")
    return TokenGrant(access_token=token, refresh_token=data["data"].get("refresh_token"))


REFRESHERS: dict[str, Callable[[httpx.AsyncClient, str], Awaitable[TokenGrant]]] = {
    "pinterest": refresh_pinterest,
    "tiktok": refresh_tiktok,
}


async def refresh_access_token(session: httpx.AsyncClient, platform: str, refresh_token: str) -> TokenGrant:
    refresher = REFRESHERS.get(platform)
    if refresher is None:
        raise AuthFailure(f"{platform} tokens cannot be refreshed; reconnect required")
    logger.info("Refreshing %s access token", platform)
    return await refresher(session, refresh_token)
