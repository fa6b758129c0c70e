"""Per-merchant platform credentials."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from concurrent.futures import Executor
from typing import Any

import httpx
from sqlalchemy import DateTime, bindparam
from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from catalogsync.errors import AuthFailure, CredentialNotFound
from catalogsync.models import PlatformCredential
from catalogsync.oauth import TokenGrant, refresh_access_token
from catalogsync.stores.base import SqlStore
from catalogsync.utils.dates import now_utc

logger = logging.getLogger(__name__)

IDENTIFIER_COLUMNS = ("shop_id", "catalog_id", "page_id", "business_id", "board_id")


class SqlCredentialStore(SqlStore):
    def __init__(
        self,
        engine: Engine,
        *,
        session: httpx.AsyncClient | None = None,
        executor: Executor | None = None,
    ) -> None:
        super().__init__(engine, executor=executor)
        self.session = session

    async def get(self, merchant_id: str, platform: str) -> PlatformCredential:
        return await self._run(self._get, merchant_id, platform)

    async def refresh(self, merchant_id: str, platform: str, refresh_token: str) -> PlatformCredential:
        if self.session is None:
            async with httpx.AsyncClient(timeout=30.0) as session:
                grant = await refresh_access_token(session, platform, refresh_token)
        else:
            grant = await refresh_access_token(self.session, platform, refresh_token)
        await self._run(self._store_grant, merchant_id, platform, grant)
        logger.info("Refreshed %s token for merchant %s", platform, merchant_id)
        return await self.get(merchant_id, platform)

    async def save_identifiers(self, merchant_id: str, platform: str, identifiers: Mapping[str, str]) -> None:
        values = {key: value for key, value in identifiers.items() if key in IDENTIFIER_COLUMNS and value}
        if values:
            await self._run(self._save_identifiers, merchant_id, platform, values)

    async def list_connected(self) -> list[tuple[str, str]]:
        return await self._run(self._list_connected)

    def _get(self, merchant_id: str, platform: str) -> PlatformCredential:
        with self.engine.connect() as conn:
            row = conn.execute(
                text(
                    """
                    SELECT merchant_id, platform, access_token, refresh_token,
                           shop_id, catalog_id, page_id, business_id, board_id
                    FROM platform_credentials
                    WHERE merchant_id = :merchant_id AND platform = :platform AND connected = TRUE
                    """
                ),
                {"merchant_id": merchant_id, "platform": platform},
            ).mappings().first()
        if row is None or not row["access_token"]:
            raise CredentialNotFound(f"{platform} is not connected for merchant {merchant_id}")
        return _to_credential(row)

    def _store_grant(self, merchant_id: str, platform: str, grant: TokenGrant) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                text(
                    """
                    UPDATE platform_credentials
                    SET access_token = :access_token,
                        refresh_token = COALESCE(:refresh_token, refresh_token),
                        updated_at = :updated_at
                    WHERE merchant_id = :merchant_id AND platform = :platform
                    """
                ).bindparams(bindparam("updated_at", type_=DateTime(timezone=True))),
                {
                    "access_token": grant.access_token,
                    "refresh_token": grant.refresh_token,
                    "updated_at": now_utc(),
                    "merchant_id": merchant_id,
                    "platform": platform,
                },
            )
            if result.rowcount == 0:
                raise AuthFailure(f"no {platform} credential row for merchant {merchant_id}")

    def _save_identifiers(self, merchant_id: str, platform: str, values: dict[str, str]) -> None:
        assignments = ", ".join(f"{column} = :{column}" for column in values)
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    f"UPDATE platform_credentials SET {assignments} "
                    "WHERE merchant_id = :merchant_id AND platform = :platform"
                ),
                {**values, "merchant_id": merchant_id, "platform": platform},
            )

    def _list_connected(self) -> list[tuple[str, str]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT merchant_id, platform FROM platform_credentials
                    WHERE connected = TRUE
                    ORDER BY merchant_id, platform
                    """
                )
            ).all()
        return [(str(merchant_id), platform) for merchant_id, platform in rows]


def _to_credential(row: Mapping[str, Any]) -> PlatformCredential:
    return PlatformCredential(
        merchant_id=str(row["merchant_id"]),
        platform=row["platform"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        **{column: row[column] for column in IDENTIFIER_COLUMNS},
    )
