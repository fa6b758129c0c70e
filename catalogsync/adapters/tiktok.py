"""TikTok Shop product listings."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx

from catalogsync.adapters.base import (
    PlatformAdapter,
    ResponseClass,
    format_price,
    json_body,
    truncate,
)
from catalogsync.errors import PrerequisiteError, SkipItem
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

DEFAULT_CATEGORY_ID = "100639"
DEFAULT_WAREHOUSE = "default"
MAX_NAME = 255
MAX_IMAGES = 9

RATE_LIMIT_CODE = 10002
AUTH_CODES = {10001, 10003}


class TikTokAdapter(PlatformAdapter):
    name = "tiktok"
    base_url = "https://open-api.tiktokglobalshop.com/api/products/v1"

    def auth_headers(self) -> dict[str, str]:
        return {
            "x-tts-access-token": self.credential.access_token,
            "x-tts-shop-id": self.credential.shop_id or "",
        }

    @staticmethod
    def parse_rate_limit(headers: Mapping[str, str]) -> RateLimitSignal | None:
        limit = headers.get("x-tts-rate-limit-limit")
        remaining = headers.get("x-tts-rate-limit-remaining")
        if not limit or not remaining:
            return None
        ceiling = float(limit)
        reset = headers.get("x-tts-rate-limit-reset")
        reset_at = float(reset) if reset else None
        # Reset values more than a day out are treated as unknown.
        if reset_at is not None and reset_at - time.time() > 86400:
            reset_at = None
        return RateLimitSignal(consumed=ceiling - float(remaining), ceiling=ceiling, reset_at=reset_at)

    def classify(self, response: httpx.Response) -> ResponseClass:
        body = json_body(response)
        code = body.get("code") if isinstance(body, dict) else None
        if response.status_code == 429 or code == RATE_LIMIT_CODE:
            return "rate_limited"
        if response.status_code == 401 or code in AUTH_CODES:
            return "auth_expired"
        if response.status_code >= 500:
            return "server_error"
        if response.is_success:
            return "ok" if code == 0 else "rejected"
        return "rejected"

    async def ensure_prerequisites(self, executor: RequestExecutor) -> PlatformContext:
        shop_id = self.credential.shop_id
        if not shop_id:
            raise PrerequisiteError("tiktok credential has no shop id")
        response = await executor.execute(
            self, PlatformRequest("GET", "/seller/global_product_categories", params={"locale": "en"})
        )
        categories = {}
        for category in (response.json().get("data") or {}).get("categories", []):
            label = category.get("local_display_name") or category.get("name")
            if label and category.get("id"):
                categories[label.strip().lower()] = str(category["id"])
        logger.info("Loaded %s TikTok categories for shop %s", len(categories), shop_id)
        return PlatformContext(platform=self.name, container_id=shop_id, categories=categories)

    def format_item(self, item: CatalogItem, context: PlatformContext) -> PlatformRequest:
        if not item.images:
            raise SkipItem("no image")
        product: dict[str, Any] = {
            "product_name": truncate(item.name, MAX_NAME),
            "description": item.description or item.name,
            "category_id": _category_id(item, context),
            "images": [{"uri": url} for url in item.images[:MAX_IMAGES]],
            "skus": [
                {
                    "seller_sku": item.id,
                    "sales_attributes": [],
                    "stock_infos": [
                        {"warehouse_id": DEFAULT_WAREHOUSE, "available_stock": max(item.stock, 0)}
                    ],
                    "price": {
                        "amount": format_price(item.price_minor, item.currency),
                        "currency": item.currency,
                    },
                }
            ],
            "package_weight": {"value": "1.0", "unit": "POUND"},
            "package_dimensions": {"length": "10", "width": "10", "height": "2", "unit": "INCH"},
            "is_cod_allowed": False,
        }
        existing = context.external_ids.get(item.id)
        if existing:
            return PlatformRequest("PUT", f"/products/{existing}", json=product)
        return PlatformRequest("POST", "/products", json=product)

    def interpret_response(self, item: CatalogItem, response: httpx.Response, context: PlatformContext) -> SyncOutcome:
        body = json_body(response) or {}
        data = body.get("data") or {}
        product_id = data.get("product_id") or context.external_ids.get(item.id)
        if not product_id:
            return Failed(reason="response missing product id", retryable=False)
        return Published(external_id=str(product_id))


def _category_id(item: CatalogItem, context: PlatformContext) -> str:
    if item.category:
        key = item.category.strip().lower()
        if key in context.categories:
            return context.categories[key]
        if item.category in context.categories.values():
            return item.category
    return DEFAULT_CATEGORY_ID
