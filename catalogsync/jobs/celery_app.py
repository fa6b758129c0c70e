"""Celery configuration for scheduled syncs."""

from __future__ import annotations

import asyncio
import os

from celery import Celery

from catalogsync.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
SYNC_INTERVAL_HOURS = float(os.environ.get("SYNC_INTERVAL_HOURS", "6"))

celery_app = Celery("catalogsync", broker=broker_url, backend=backend_url)
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "sync-all-catalogs": {
        "task": "catalogsync.jobs.sync.run_all",
        "schedule": SYNC_INTERVAL_HOURS * 60 * 60,
    },
}


@celery_app.task(name="catalogsync.jobs.sync.run_sync")
def run_sync_task(merchant_id: str, platform: str) -> dict[str, object]:  # pragma: no cover - executed by worker
    from catalogsync.jobs.sync import run_sync

    report = asyncio.run(run_sync(merchant_id, platform))
    return report.as_dict()


@celery_app.task(name="catalogsync.jobs.sync.run_all")
def run_all_task() -> int:  # pragma: no cover - executed by worker
    from catalogsync.jobs.sync import run_all

    return len(asyncio.run(run_all()))
