"""FastAPI application for on-demand syncs and ledger lookups."""

from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException, Query
from itsdangerous import BadSignature
from pydantic import BaseModel
from sqlalchemy.engine import Engine

from catalogsync.adapters import ADAPTERS
from catalogsync.db.session import create_engine_from_env
from catalogsync.jobs.sync import build_coordinator
from catalogsync.models import Failed, Published
from catalogsync.stores import SqlLedger
from catalogsync.sync.coordinator import SyncCoordinator
from catalogsync.utils.urls import RECONNECT_PURPOSE, load_token

logger = logging.getLogger(__name__)

app = FastAPI(title="Catalog Sync API")


class SyncReportResponse(BaseModel):
    success: bool
    synced: int
    failed: int
    skipped: int
    not_attempted: int
    auth_required: bool
    error: str | None = None


class LedgerEntryResponse(BaseModel):
    product_id: str
    platform: str
    status: str
    external_id: str | None = None
    reason: str | None = None
    retryable: bool | None = None


class ReconnectResponse(BaseModel):
    merchant_id: str
    platform: str


def get_engine() -> Engine:
    return create_engine_from_env()


def get_coordinator(engine: Engine = Depends(get_engine)) -> SyncCoordinator:
    return build_coordinator(engine)


def _check_platform(platform: str) -> None:
    if platform not in ADAPTERS:
        raise HTTPException(status_code=404, detail=f"Unknown platform {platform}")


@app.post("/merchants/{merchant_id}/platforms/{platform}/sync", response_model=SyncReportResponse)
async def sync_platform(
    merchant_id: str,
    platform: str,
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> SyncReportResponse:
    _check_platform(platform)
    report = await coordinator.sync_catalog(merchant_id, platform)
    logger.info("On-demand %s sync for merchant %s: success=%s", platform, merchant_id, report.success)
    return SyncReportResponse(**report.as_dict())


@app.get(
    "/merchants/{merchant_id}/platforms/{platform}/ledger/{product_id}",
    response_model=LedgerEntryResponse,
)
async def latest_ledger_entry(
    merchant_id: str,
    platform: str,
    product_id: str,
    engine: Engine = Depends(get_engine),
) -> LedgerEntryResponse:
    _check_platform(platform)
    outcome = await SqlLedger(engine).latest(product_id, platform)
    if outcome is None:
        raise HTTPException(status_code=404, detail="No ledger entry")
    return LedgerEntryResponse(
        product_id=product_id,
        platform=platform,
        status=outcome.status,
        external_id=outcome.external_id if isinstance(outcome, Published) else None,
        reason=None if isinstance(outcome, Published) else outcome.reason,
        retryable=outcome.retryable if isinstance(outcome, Failed) else None,
    )


@app.get("/connect/{platform}", response_model=ReconnectResponse)
async def reconnect(platform: str, token: str = Query(...)) -> ReconnectResponse:
    _check_platform(platform)
    try:
        data = load_token(token, RECONNECT_PURPOSE)
    except (BadSignature, TypeError) as exc:
        raise HTTPException(status_code=400, detail="Invalid token") from exc
    if data.get("platform") != platform or not data.get("merchant_id"):
        raise HTTPException(status_code=400, detail="Invalid token")
    return ReconnectResponse(merchant_id=str(data["merchant_id"]), platform=platform)
