"""Shared adapter interface."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Literal

import httpx

from catalogsync.config import STOREFRONT_URL
from catalogsync.models import (
    CatalogItem,
    PlatformContext,
    PlatformCredential,
    PlatformRequest,
    SyncOutcome,
)
from catalogsync.utils.rate_limit import RateLimitSignal

if TYPE_CHECKING:
    from catalogsync.errors import SyncError
    from catalogsync.sync.executor import RequestExecutor

logger = logging.getLogger(__name__)

ResponseClass = Literal["ok", "rate_limited", "server_error", "auth_expired", "rejected"]

ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "VND", "CLP"}


class PlatformAdapter(ABC):
    """Translates catalog items to one platform's wire shape and back.

    Retry, backoff and rate limiting live in :class:`RequestExecutor`; adapters
    only say how to send, how to classify a response and how to read it.
    """

    name: str
    base_url: str
    supports_batch = False

    def __init__(self, credential: PlatformCredential, session: httpx.AsyncClient) -> None:
        self.credential = credential
        self.session = session

    async def send(self, request: PlatformRequest) -> httpx.Response:
        params = {**self.auth_params(), **request.params}
        return await self.session.request(
            request.method,
            f"{self.base_url}{request.path}",
            params=params or None,
            json=request.json,
            data=request.data,
            headers=self.auth_headers(),
        )

    def auth_headers(self) -> dict[str, str]:
        return {}

    def auth_params(self) -> dict[str, str]:
        return {}

    @staticmethod
    @abstractmethod
    def parse_rate_limit(headers: Mapping[str, str]) -> RateLimitSignal | None:
        ...

    def classify(self, response: httpx.Response) -> ResponseClass:
        status = response.status_code
        if response.is_success:
            return "ok"
        if status == 429:
            return "rate_limited"
        if status >= 500:
            return "server_error"
        if status == 401:
            return "auth_expired"
        return "rejected"

    def describe_error(self, response: httpx.Response) -> str:
        body = json_body(response)
        if isinstance(body, dict):
            error = body.get("error")
            message = body.get("message")
            if not message and isinstance(error, dict):
                message = error.get("message")
            if message:
                return str(message)
        return f"HTTP {response.status_code}"

    @abstractmethod
    async def ensure_prerequisites(self, executor: RequestExecutor) -> PlatformContext:
        ...

    @abstractmethod
    def format_item(self, item: CatalogItem, context: PlatformContext) -> PlatformRequest:
        ...

    @abstractmethod
    def interpret_response(self, item: CatalogItem, response: httpx.Response, context: PlatformContext) -> SyncOutcome:
        ...

    def format_batch(self, requests: list[PlatformRequest], context: PlatformContext) -> PlatformRequest:
        raise NotImplementedError(f"{self.name} does not push batches")

    def interpret_batch(
        self, items: list[CatalogItem], response: httpx.Response, context: PlatformContext
    ) -> list[SyncOutcome | SyncError]:
        raise NotImplementedError(f"{self.name} does not push batches")


def product_url(item: CatalogItem) -> str:
    return f"{STOREFRONT_URL.rstrip('/')}/products/{item.slug or item.id}"


def format_price(price_minor: int, currency: str) -> str:
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return str(price_minor)
    return str(Decimal(price_minor).scaleb(-2))


def truncate(value: str | None, limit: int) -> str:
    value = value or ""
    if len(value) <= limit:
        return value
    return value[:limit]


def json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
