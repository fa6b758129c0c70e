"""Platform adapters."""

from __future__ import annotations

import httpx

from catalogsync.adapters.base import PlatformAdapter
from catalogsync.adapters.facebook import FacebookAdapter
from catalogsync.adapters.pinterest import PinterestAdapter
from catalogsync.adapters.tiktok import TikTokAdapter
from catalogsync.errors import UnknownPlatformError
from catalogsync.models import PlatformCredential

ADAPTERS: dict[str, type[PlatformAdapter]] = {
    FacebookAdapter.name: FacebookAdapter,
    PinterestAdapter.name: PinterestAdapter,
    TikTokAdapter.name: TikTokAdapter,
}


def adapter_class(platform: str) -> type[PlatformAdapter]:
    try:
        return ADAPTERS[platform]
    except KeyError:
        raise UnknownPlatformError(platform) from None


def build_adapter(credential: PlatformCredential, session: httpx.AsyncClient) -> PlatformAdapter:
    return adapter_class(credential.platform)(credential, session)
