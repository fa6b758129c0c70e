"""Scheduled catalog sync job."""

from __future__ import annotations

import asyncio
import logging

import httpx
from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.engine import Engine

from catalogsync.db.session import create_engine_from_env
from catalogsync.email.render import render_email
from catalogsync.models import SyncReport
from catalogsync.stores import SqlCatalogStore, SqlCredentialStore, SqlLedger
from catalogsync.sync.coordinator import SyncCoordinator
from catalogsync.utils.dates import format_timestamp, now_in_tz
from catalogsync.utils.esp import EmailMessage, EmailProvider
from catalogsync.utils.rate_limit import TrackerRegistry
from catalogsync.utils.urls import reconnect_url

logger = logging.getLogger(__name__)

# Quota is tracked per (merchant, platform) for the life of the process.
TRACKERS = TrackerRegistry()

PLATFORM_LABELS = {"facebook": "Facebook", "pinterest": "Pinterest", "tiktok": "TikTok Shop"}


def build_coordinator(engine: Engine, session: httpx.AsyncClient | None = None) -> SyncCoordinator:
    return SyncCoordinator(
        SqlCatalogStore(engine),
        SqlCredentialStore(engine, session=session),
        SqlLedger(engine),
        trackers=TRACKERS,
        session=session,
    )


async def run_sync(
    merchant_id: str,
    platform: str,
    *,
    engine: Engine | None = None,
    provider: EmailProvider | None = None,
) -> SyncReport:
    load_dotenv()
    engine = engine or create_engine_from_env()
    async with httpx.AsyncClient(timeout=30.0) as session:
        report = await build_coordinator(engine, session).sync_catalog(merchant_id, platform)
    if report.auth_required:
        await notify_reconnect(engine, merchant_id, platform, report, provider or EmailProvider())
    return report


async def run_all(*, engine: Engine | None = None, provider: EmailProvider | None = None) -> dict[tuple[str, str], SyncReport]:
    load_dotenv()
    engine = engine or create_engine_from_env()
    provider = provider or EmailProvider()
    connected = await SqlCredentialStore(engine).list_connected()
    reports: dict[tuple[str, str], SyncReport] = {}
    for merchant_id, platform in connected:
        reports[(merchant_id, platform)] = await run_sync(merchant_id, platform, engine=engine, provider=provider)
    failed = [key for key, report in reports.items() if not report.success]
    logger.info("Synced %s connections, %s unsuccessful", len(reports), len(failed))
    return reports


async def notify_reconnect(
    engine: Engine,
    merchant_id: str,
    platform: str,
    report: SyncReport,
    provider: EmailProvider,
) -> None:
    merchant = _load_merchant(engine, merchant_id)
    if not merchant or not merchant["email"]:
        logger.warning("Merchant %s has no email; cannot request %s reconnect", merchant_id, platform)
        return
    label = PLATFORM_LABELS.get(platform, platform.title())
    subject, html = render_email(
        "reconnect",
        {
            "subject": f"Reconnect {label} to keep your catalog in sync",
            "merchant_name": merchant["name"],
            "platform_label": label,
            "synced": report.synced,
            "not_attempted": report.not_attempted,
            "reconnect_url": reconnect_url(merchant_id, platform),
            "stopped_at": format_timestamp(now_in_tz()),
        },
    )
    await provider.send(EmailMessage(to=merchant["email"], subject=subject, html=html))


def _load_merchant(engine: Engine, merchant_id: str):
    with engine.connect() as conn:
        return conn.execute(
            text("SELECT id, name, email FROM merchants WHERE id = :id"),
            {"id": merchant_id},
        ).mappings().first()


if __name__ == "__main__":
    asyncio.run(run_all())
