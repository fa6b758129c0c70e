"""Append-only publishing ledger.

Every resolved item gets one row per sync attempt. Rows are never updated; the
current state of an item on a platform is its most recent row.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, bindparam
from sqlalchemy.sql import text

from catalogsync.models import Failed, Published, Skipped, SyncOutcome
from catalogsync.stores.base import SqlStore
from catalogsync.utils.dates import now_utc

logger = logging.getLogger(__name__)

LOOKUP_BATCH = 500

INSERT_ROW = text(
    """
    INSERT INTO publishing_ledger (product_id, platform, status, external_id, reason, retryable, recorded_at)
    VALUES (:product_id, :platform, :status, :external_id, :reason, :retryable, :recorded_at)
    """
).bindparams(bindparam("recorded_at", type_=DateTime(timezone=True)))

LATEST_ROW = text(
    """
    SELECT status, external_id, reason, retryable
    FROM publishing_ledger
    WHERE product_id = :product_id AND platform = :platform
    ORDER BY id DESC
    LIMIT 1
    """
)

EXTERNAL_IDS = text(
    """
    SELECT product_id, external_id
    FROM publishing_ledger
    WHERE platform = :platform AND external_id IS NOT NULL AND product_id IN :product_ids
    ORDER BY id
    """
).bindparams(bindparam("product_ids", expanding=True))


class SqlLedger(SqlStore):
    async def append(
        self,
        product_id: str,
        platform: str,
        outcome: SyncOutcome,
        timestamp: datetime | None = None,
    ) -> None:
        await self._run(self._append, product_id, platform, outcome, timestamp or now_utc())

    async def latest(self, product_id: str, platform: str) -> SyncOutcome | None:
        return await self._run(self._latest, product_id, platform)

    async def external_ids(self, platform: str, product_ids: Iterable[str]) -> dict[str, str]:
        """Most recent external id per product, for items published before."""
        return await self._run(self._external_ids, platform, list(product_ids))

    def _append(self, product_id: str, platform: str, outcome: SyncOutcome, timestamp: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(INSERT_ROW, {"product_id": product_id, "platform": platform, "recorded_at": timestamp, **_columns(outcome)})

    def _latest(self, product_id: str, platform: str) -> SyncOutcome | None:
        with self.engine.connect() as conn:
            row = conn.execute(LATEST_ROW, {"product_id": product_id, "platform": platform}).mappings().first()
        return _to_outcome(row) if row else None

    def _external_ids(self, platform: str, product_ids: list[str]) -> dict[str, str]:
        found: dict[str, str] = {}
        with self.engine.connect() as conn:
            for start in range(0, len(product_ids), LOOKUP_BATCH):
                batch = product_ids[start : start + LOOKUP_BATCH]
                for product_id, external_id in conn.execute(
                    EXTERNAL_IDS, {"platform": platform, "product_ids": batch}
                ):
                    found[str(product_id)] = external_id
        return found


def _columns(outcome: SyncOutcome) -> dict[str, Any]:
    if isinstance(outcome, Published):
        return {"status": outcome.status, "external_id": outcome.external_id, "reason": None, "retryable": None}
    if isinstance(outcome, Failed):
        return {"status": outcome.status, "external_id": None, "reason": outcome.reason, "retryable": outcome.retryable}
    return {"status": outcome.status, "external_id": None, "reason": outcome.reason, "retryable": None}


def _to_outcome(row: Mapping[str, Any]) -> SyncOutcome:
    status = row["status"]
    if status == Published.status:
        return Published(external_id=row["external_id"])
    if status == Failed.status:
        return Failed(reason=row["reason"] or "", retryable=bool(row["retryable"]))
    if status == Skipped.status:
        return Skipped(reason=row["reason"] or "")
    raise ValueError(f"Unknown ledger status {status!r}")
