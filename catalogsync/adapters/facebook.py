"""Facebook Shop catalog sync via the Graph API batch endpoint."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from catalogsync.adapters.base import (
    PlatformAdapter,
    ResponseClass,
    json_body,
    product_url,
    truncate,
)
from catalogsync.config import BRAND_NAME
from catalogsync.errors import AuthExpiredError, PrerequisiteError, SkipItem, SyncError
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

CATALOG_NAME = f"{BRAND_NAME} Shop"
MAX_NAME = 150
MAX_DESCRIPTION = 5000
MAX_ADDITIONAL_IMAGES = 10

AUTH_ERROR_CODES = {102, 190}
THROTTLE_ERROR_CODES = {4, 17, 32, 613}


class FacebookAdapter(PlatformAdapter):
    name = "facebook"
    base_url = "https://graph.facebook.com/v19.0"
    supports_batch = True

    def auth_params(self) -> dict[str, str]:
        return {"access_token": self.credential.access_token}

    @staticmethod
    def parse_rate_limit(headers: Mapping[str, str]) -> RateLimitSignal | None:
        raw = headers.get("x-business-use-case-usage")
        if raw:
            usage = json.loads(raw)
            entries = next(iter(usage.values()))
            stats = entries[0] if isinstance(entries, list) else entries
        else:
            raw = headers.get("x-app-usage")
            if not raw:
                return None
            stats = json.loads(raw)
        # Usage values are already percentages of the allowance.
        consumed = max(
            float(stats.get("call_count", 0)),
            float(stats.get("total_time", 0)),
            float(stats.get("total_cputime", 0)),
        )
        reset_at = None
        regain_minutes = float(stats.get("estimated_time_to_regain_access", 0) or 0)
        if regain_minutes > 0:
            reset_at = time.time() + regain_minutes * 60
        return RateLimitSignal(consumed=consumed, ceiling=100.0, reset_at=reset_at)

    def classify(self, response: httpx.Response) -> ResponseClass:
        code = _error_code(json_body(response))
        if code in AUTH_ERROR_CODES:
            return "auth_expired"
        if code in THROTTLE_ERROR_CODES:
            return "rate_limited"
        return super().classify(response)

    async def ensure_prerequisites(self, executor: RequestExecutor) -> PlatformContext:
        catalog_id = self.credential.catalog_id
        if not catalog_id:
            owner = self.credential.business_id or self.credential.page_id
            if not owner:
                raise PrerequisiteError("facebook credential has no business or page id")
            catalog_id = await self._find_catalog(executor, owner)
            if catalog_id is None:
                response = await executor.execute(
                    self,
                    PlatformRequest(
                        "POST",
                        f"/{owner}/owned_product_catalogs",
                        data={"name": CATALOG_NAME, "vertical": "commerce"},
                    ),
                )
                catalog_id = str(response.json()["id"])
                logger.info("Created Facebook catalog %s for %s", catalog_id, owner)
        return PlatformContext(platform=self.name, container_id=catalog_id, identifiers={"catalog_id": catalog_id})

    async def _find_catalog(self, executor: RequestExecutor, owner: str) -> str | None:
        response = await executor.execute(
            self,
            PlatformRequest("GET", f"/{owner}/owned_product_catalogs", params={"fields": "id,name", "limit": 100}),
        )
        for catalog in response.json().get("data", []):
            if catalog.get("name") == CATALOG_NAME:
                return str(catalog["id"])
        return None

    def format_item(self, item: CatalogItem, context: PlatformContext) -> PlatformRequest:
        if not item.images:
            raise SkipItem("no image")
        fields: dict[str, Any] = {
            "retailer_id": item.id,
            "name": truncate(item.name, MAX_NAME),
            "description": truncate(item.description or item.name, MAX_DESCRIPTION),
            "price": item.price_minor,
            "currency": item.currency,
            "availability": "in stock" if item.stock > 0 else "out of stock",
            "condition": "new",
            "image_url": item.images[0],
            "url": product_url(item),
            "brand": BRAND_NAME,
            "additional_image_urls": list(item.images[1 : MAX_ADDITIONAL_IMAGES + 1]),
        }
        if item.tags:
            fields["product_type"] = item.tags[0]
        if item.category:
            fields["category"] = item.category
        existing = context.external_ids.get(item.id)
        path = existing if existing else f"{context.container_id}/products"
        return PlatformRequest("POST", path, data=fields)

    def format_batch(self, requests: list[PlatformRequest], context: PlatformContext) -> PlatformRequest:
        batch = [
            {"method": request.method, "relative_url": request.path, "body": _encode_body(request.data or {})}
            for request in requests
        ]
        return PlatformRequest("POST", "/", data={"batch": json.dumps(batch)})

    def interpret_response(self, item: CatalogItem, response: httpx.Response, context: PlatformContext) -> SyncOutcome:
        body = json_body(response) or {}
        product_id = body.get("id") or context.external_ids.get(item.id)
        if not product_id:
            return Failed(reason="response missing product id", retryable=False)
        return Published(external_id=str(product_id))

    def interpret_batch(
        self, items: list[CatalogItem], response: httpx.Response, context: PlatformContext
    ) -> list[SyncOutcome | SyncError]:
        entries = json_body(response)
        if not isinstance(entries, list):
            entries = []
        outcomes: list[SyncOutcome | SyncError] = []
        for index, item in enumerate(items):
            entry = entries[index] if index < len(entries) else None
            outcomes.append(self._interpret_entry(item, entry, context))
        return outcomes

    def _interpret_entry(
        self, item: CatalogItem, entry: dict[str, Any] | None, context: PlatformContext
    ) -> SyncOutcome | SyncError:
        if not entry:
            return Failed(reason="no result for batch entry", retryable=True)
        code = int(entry.get("code", 0))
        body = _parse_entry_body(entry.get("body"))
        if code == 200:
            product_id = body.get("id") or context.external_ids.get(item.id)
            if not product_id:
                return Failed(reason="response missing product id", retryable=False)
            return Published(external_id=str(product_id))
        error = body.get("error") if isinstance(body.get("error"), dict) else {}
        message = error.get("message") or f"HTTP {code}"
        error_code = error.get("code")
        if error_code in AUTH_ERROR_CODES:
            return AuthExpiredError(message, status_code=code)
        retryable = code == 429 or code >= 500 or error_code in THROTTLE_ERROR_CODES
        return Failed(reason=message, retryable=retryable)


def _error_code(body: Any) -> int | None:
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("code")
    return None


def _parse_entry_body(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _encode_body(fields: Mapping[str, Any]) -> str:
    encoded = {
        key: json.dumps(value) if isinstance(value, (list, dict)) else value
        for key, value in fields.items()
    }
    return urlencode(encoded)
