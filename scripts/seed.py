"""Seed the database with a demo merchant, products and platform connections."""

from __future__ import annotations

import json
import os

from sqlalchemy import text

from catalogsync.db.migrate import run_migrations
from catalogsync.db.session import create_engine_from_env

DEMO_MERCHANT = {"id": "demo", "name": "Demo Goods", "email": "owner@example.com"}

DEMO_PRODUCTS = [
    {
        "id": f"demo-{n:03d}",
        "merchant_id": "demo",
        "name": f"Demo Product {n}",
        "description": "A product used for local sync testing.",
        "price_minor": 1000 + n * 50,
        "currency": "USD",
        "stock": n % 7,
        "images": json.dumps([f"https://picsum.photos/seed/{n}/800/800"]),
        "tags": json.dumps(["demo", "handmade"]),
        "category": "Home Decor",
        "slug": f"demo-product-{n}",
        "status": "active",
    }
    for n in range(1, 26)
]


def main() -> None:
    engine = create_engine_from_env()
    run_migrations(engine)
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                INSERT INTO merchants (id, name, email)
                VALUES (:id, :name, :email)
                ON CONFLICT (id) DO NOTHING
                """
            ),
            DEMO_MERCHANT,
        )
        for product in DEMO_PRODUCTS:
            conn.execute(
                text(
                    """
                    INSERT INTO products (id, merchant_id, name, description, price_minor, currency,
                                          stock, images, tags, category, slug, status)
                    VALUES (:id, :merchant_id, :name, :description, :price_minor, :currency,
                            :stock, :images, :tags, :category, :slug, :status)
                    ON CONFLICT (id) DO NOTHING
                    """
                ),
                product,
            )
        for platform, token_var in (("pinterest", "PINTEREST_ACCESS_TOKEN"), ("tiktok", "TIKTOK_ACCESS_TOKEN")):
            token = os.environ.get(token_var)
            if not token:
                continue
            conn.execute(
                text(
                    """
                    INSERT INTO platform_credentials (merchant_id, platform, access_token, shop_id, connected)
                    VALUES (:merchant_id, :platform, :access_token, :shop_id, TRUE)
                    ON CONFLICT (merchant_id, platform) DO UPDATE SET access_token = EXCLUDED.access_token
                    """
                ),
                {
                    "merchant_id": "demo",
                    "platform": platform,
                    "access_token": token,
                    "shop_id": os.environ.get("TIKTOK_SHOP_ID") if platform == "tiktok" else None,
                },
            )
    print("Seed complete")


if __name__ == "__main__":
    main()
