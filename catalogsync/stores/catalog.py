"""Catalog snapshot reads."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.sql import text

from catalogsync.models import CatalogItem
from catalogsync.stores.base import SqlStore, json_list

logger = logging.getLogger(__name__)

ACTIVE_PRODUCTS = text(
    """
    SELECT id, name, description, price_minor, currency, stock, images, tags, category, slug
    FROM products
    WHERE merchant_id = :merchant_id AND status = 'active'
    ORDER BY id
    """
)


class SqlCatalogStore(SqlStore):
    async def list_active(self, merchant_id: str) -> list[CatalogItem]:
        return await self._run(self._list_active, merchant_id)

    def _list_active(self, merchant_id: str) -> list[CatalogItem]:
        with self.engine.connect() as conn:
            rows = conn.execute(ACTIVE_PRODUCTS, {"merchant_id": merchant_id}).mappings().all()
        items = [_to_item(row) for row in rows]
        logger.info("Loaded %s active products for merchant %s", len(items), merchant_id)
        return items


def _to_item(row: Mapping[str, Any]) -> CatalogItem:
    return CatalogItem(
        id=str(row["id"]),
        name=row["name"],
        description=row["description"] or "",
        price_minor=int(row["price_minor"]),
        stock=int(row["stock"] or 0),
        images=tuple(json_list(row["images"])),
        tags=tuple(json_list(row["tags"])),
        category=row["category"],
        currency=row["currency"] or "USD",
        slug=row["slug"],
    )
