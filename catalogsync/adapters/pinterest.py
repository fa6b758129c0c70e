"""Pinterest product pins via API v5."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx

from catalogsync.adapters.base import PlatformAdapter, format_price, json_body, product_url, truncate
from catalogsync.config import BRAND_NAME
from catalogsync.errors import SkipItem
from catalogsync.models import (
    CatalogItem,
    Failed,
    PlatformContext,
    PlatformRequest,
    Published,
    SyncOutcome,
)
from catalogsync.utils.rate_limit import RateLimitSignal

if TYPE_CHECKING:
    from catalogsync.sync.executor import RequestExecutor

logger = logging.getLogger(__name__)

BOARD_NAME = "Products"
MAX_TITLE = 100
MAX_DESCRIPTION = 500
MAX_HASHTAGS = 20


class PinterestAdapter(PlatformAdapter):
    name = "pinterest"
    base_url = "https://api.pinterest.com/v5"

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.credential.access_token}"}

    @staticmethod
    def parse_rate_limit(headers: Mapping[str, str]) -> RateLimitSignal | None:
        limit = headers.get("x-ratelimit-limit")
        remaining = headers.get("x-ratelimit-remaining")
        if not limit or not remaining:
            return None
        ceiling = float(limit.split(",")[0])
        consumed = ceiling - float(remaining)
        reset = headers.get("x-ratelimit-reset")
        reset_at = time.time() + float(reset) if reset else None
        return RateLimitSignal(consumed=consumed, ceiling=ceiling, reset_at=reset_at)

    async def ensure_prerequisites(self, executor: RequestExecutor) -> PlatformContext:
        board_id = await self._find_board(executor)
        if board_id is None:
            response = await executor.execute(
                self,
                PlatformRequest(
                    "POST",
                    "/boards",
                    json={
                        "name": BOARD_NAME,
                        "description": f"Product catalog from {BRAND_NAME}",
                        "privacy": "PUBLIC",
                    },
                ),
            )
            board_id = str(response.json()["id"])
            logger.info("Created Pinterest board %s", board_id)
        return PlatformContext(platform=self.name, container_id=board_id, identifiers={"board_id": board_id})

    async def _find_board(self, executor: RequestExecutor) -> str | None:
        bookmark: str | None = None
        while True:
            params: dict[str, Any] = {"page_size": 100}
            if bookmark:
                params["bookmark"] = bookmark
            response = await executor.execute(self, PlatformRequest("GET", "/boards", params=params))
            data = response.json()
            for board in data.get("items", []):
                if board.get("name") == BOARD_NAME:
                    return str(board["id"])
            bookmark = data.get("bookmark")
            if not bookmark:
                return None

    def format_item(self, item: CatalogItem, context: PlatformContext) -> PlatformRequest:
        if not item.images:
            raise SkipItem("no image")
        pin = {
            "board_id": context.container_id,
            "title": truncate(item.name, MAX_TITLE),
            "description": _description(item),
            "link": product_url(item),
            "alt_text": truncate(item.name, MAX_DESCRIPTION),
        }
        existing = context.external_ids.get(item.id)
        if existing:
            return PlatformRequest("PATCH", f"/pins/{existing}", json=pin)
        pin["media_source"] = {"source_type": "image_url", "url": item.images[0]}
        pin["product"] = {
            "product_type": item.tags[0] if item.tags else "General",
            "currency": item.currency,
            "price": format_price(item.price_minor, item.currency),
            "availability": "IN_STOCK" if item.stock > 0 else "OUT_OF_STOCK",
            "condition": "NEW",
            "brand": BRAND_NAME,
        }
        return PlatformRequest("POST", "/pins", json=pin)

    def interpret_response(self, item: CatalogItem, response: httpx.Response, context: PlatformContext) -> SyncOutcome:
        body = json_body(response) or {}
        pin_id = body.get("id") or context.external_ids.get(item.id)
        if not pin_id:
            return Failed(reason="response missing pin id", retryable=False)
        return Published(external_id=str(pin_id))


def _description(item: CatalogItem) -> str:
    description = item.description or ""
    tags = [tag for tag in item.tags if tag.strip()][:MAX_HASHTAGS]
    if tags:
        hashtags = " ".join("#" + "".join(tag.split()) for tag in tags)
        description = f"{description}\n\n{hashtags}" if description else hashtags
    return truncate(description, MAX_DESCRIPTION)
