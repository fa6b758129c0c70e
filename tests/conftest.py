import json
from dataclasses import replace

import pytest
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, MetaData, Table, Text, create_engine
from sqlalchemy.pool import StaticPool

from catalogsync.config import load_platform_settings
from catalogsync.models import CatalogItem
from catalogsync.sync.cancel import CancelToken
from catalogsync.utils.rate_limit import RateLimitTracker
from catalogsync.utils.retry import BackoffPolicy

metadata = MetaData()

merchants = Table(
    "merchants",
    metadata,
    Column("id", Text, primary_key=True),
    Column("name", Text, nullable=False),
    Column("email", Text),
)

products = Table(
    "products",
    metadata,
    Column("id", Text, primary_key=True),
    Column("merchant_id", Text, ForeignKey("merchants.id"), nullable=False),
    Column("name", Text, nullable=False),
    Column("description", Text),
    Column("price_minor", Integer, nullable=False),
    Column("currency", Text, nullable=False, default="USD"),
    Column("stock", Integer, nullable=False, default=0),
    Column("images", Text, nullable=False, default="[]"),
    Column("tags", Text, nullable=False, default="[]"),
    Column("category", Text),
    Column("slug", Text),
    Column("status", Text, nullable=False, default="active"),
)

platform_credentials = Table(
    "platform_credentials",
    metadata,
    Column("merchant_id", Text, ForeignKey("merchants.id"), primary_key=True),
    Column("platform", Text, primary_key=True),
    Column("access_token", Text),
    Column("refresh_token", Text),
    Column("shop_id", Text),
    Column("catalog_id", Text),
    Column("page_id", Text),
    Column("business_id", Text),
    Column("board_id", Text),
    Column("connected", Boolean, nullable=False, default=True),
    Column("updated_at", DateTime(timezone=True)),
)

publishing_ledger = Table(
    "publishing_ledger",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_id", Text, ForeignKey("products.id"), nullable=False),
    Column("platform", Text, nullable=False),
    Column("status", Text, nullable=False),
    Column("external_id", Text),
    Column("reason", Text),
    Column("retryable", Boolean),
    Column("recorded_at", DateTime(timezone=True), nullable=False),
)

MERCHANT_ID = "m1"


@pytest.fixture()
def engine():
    # Stores run their queries on a worker thread, so the in-memory database
    # has to be shared across threads through a single connection.
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def seeded_engine(engine):
    with engine.begin() as conn:
        conn.execute(merchants.insert(), {"id": MERCHANT_ID, "name": "Acme Goods", "email": "owner@acme.test"})
    return engine


def make_item(n: int, **overrides) -> CatalogItem:
    values = {
        "id": f"sku-{n:03d}",
        "name": f"Product {n:03d}",
        "description": f"Description for product {n}",
        "price_minor": 1000 + n,
        "stock": 5,
        "images": (f"https://cdn.acme.test/{n}.jpg",),
        "tags": ("summer",),
        "category": "Home Decor",
        "slug": f"product-{n}",
    }
    values.update(overrides)
    return CatalogItem(**values)


def seed_products(engine, items, merchant_id: str = MERCHANT_ID) -> None:
    with engine.begin() as conn:
        conn.execute(
            products.insert(),
            [
                {
                    "id": item.id,
                    "merchant_id": merchant_id,
                    "name": item.name,
                    "description": item.description,
                    "price_minor": item.price_minor,
                    "currency": item.currency,
                    "stock": item.stock,
                    "images": json.dumps(list(item.images)),
                    "tags": json.dumps(list(item.tags)),
                    "category": item.category,
                    "slug": item.slug,
                    "status": "active",
                }
                for item in items
            ],
        )


def seed_credential(engine, platform: str, merchant_id: str = MERCHANT_ID, **columns) -> None:
    values = {"merchant_id": merchant_id, "platform": platform, "access_token": "token", "connected": True}
    values.update(columns)
    with engine.begin() as conn:
        conn.execute(platform_credentials.insert(), values)


def ledger_rows(engine, platform: str | None = None):
    query = publishing_ledger.select().order_by(publishing_ledger.c.id)
    if platform:
        query = query.where(publishing_ledger.c.platform == platform)
    with engine.connect() as conn:
        return conn.execute(query).mappings().all()


def fast_backoff() -> BackoffPolicy:
    return BackoffPolicy(base=0.0, jitter=lambda: 0.0)


def fast_tracker(parser, **kwargs) -> RateLimitTracker:
    kwargs.setdefault("request_interval", 0.0)
    return RateLimitTracker(parser, **kwargs)


def fast_settings(**overrides):
    def loader(platform: str):
        settings = load_platform_settings(platform)
        return replace(settings, request_interval=0.0, **overrides)

    return loader


class RecordingToken(CancelToken):
    """Records requested waits instead of sleeping."""

    def __init__(self):
        super().__init__()
        self.sleeps = []

    async def sleep(self, delay):
        self.sleeps.append(delay)
        return self.cancelled
