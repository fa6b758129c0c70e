"""Entry point for pushing a merchant's active catalog to one platform."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Protocol

import httpx

from catalogsync.adapters import adapter_class, build_adapter
from catalogsync.adapters.base import PlatformAdapter
from catalogsync.config import PlatformSettings, load_platform_settings
from catalogsync.errors import (
    AuthExpiredError,
    AuthFailure,
    CredentialNotFound,
    SyncCancelled,
    SyncError,
    UnknownPlatformError,
)
from catalogsync.models import (
    CatalogItem,
    PlatformContext,
    PlatformCredential,
    SyncOutcome,
    SyncReport,
)
from catalogsync.sync.cancel import CancelToken
from catalogsync.sync.executor import RequestExecutor
from catalogsync.sync.orchestrator import BatchOrchestrator
from catalogsync.utils.rate_limit import RateLimitTracker, TrackerRegistry
from catalogsync.utils.retry import BackoffPolicy

logger = logging.getLogger(__name__)


class CatalogStore(Protocol):
    async def list_active(self, merchant_id: str) -> list[CatalogItem]: ...


class CredentialStore(Protocol):
    async def get(self, merchant_id: str, platform: str) -> PlatformCredential: ...

    async def refresh(self, merchant_id: str, platform: str, refresh_token: str) -> PlatformCredential: ...

    async def save_identifiers(self, merchant_id: str, platform: str, identifiers: Mapping[str, str]) -> None: ...


class Ledger(Protocol):
    async def append(self, product_id: str, platform: str, outcome: SyncOutcome, timestamp=None) -> None: ...

    async def latest(self, product_id: str, platform: str) -> SyncOutcome | None: ...

    async def external_ids(self, platform: str, product_ids: Iterable[str]) -> dict[str, str]: ...


class SyncState(str, enum.Enum):
    IDLE = "idle"
    ENSURING_PREREQUISITES = "ensuring_prerequisites"
    SYNCING = "syncing"
    REFRESHING = "refreshing"
    RECONCILING = "reconciling"
    DONE = "done"
    AUTH_REQUIRED = "auth_required"


class SyncCoordinator:
    """Long-lived dependencies shared by every run.

    Rate-limit trackers are shared per (merchant, platform) across runs because
    quota is consumed platform-side; everything else is built per run.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        credentials: CredentialStore,
        ledger: Ledger,
        *,
        trackers: TrackerRegistry | None = None,
        session: httpx.AsyncClient | None = None,
        settings_loader: Callable[[str], PlatformSettings] = load_platform_settings,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        self.catalog = catalog
        self.credentials = credentials
        self.ledger = ledger
        self.trackers = trackers or TrackerRegistry()
        self.session = session
        self.settings_loader = settings_loader
        self.backoff = backoff

    async def sync_catalog(self, merchant_id: str, platform: str, *, cancel: CancelToken | None = None) -> SyncReport:
        try:
            settings = self.settings_loader(platform)
            parser = adapter_class(platform).parse_rate_limit
        except UnknownPlatformError:
            return SyncReport(success=False, error=f"unknown platform {platform!r}")
        try:
            credential = await self.credentials.get(merchant_id, platform)
        except CredentialNotFound as exc:
            return SyncReport(success=False, error=str(exc))

        tracker = self.trackers.get(
            merchant_id,
            platform,
            lambda: RateLimitTracker(
                parser,
                high_water=settings.high_water,
                request_interval=settings.request_interval,
                default_wait=settings.default_wait,
            ),
        )
        cancel = cancel or CancelToken()
        executor = RequestExecutor(
            tracker,
            backoff=self.backoff or BackoffPolicy(base=settings.backoff_base),
            max_attempts=settings.max_attempts,
            throttle_cap=settings.throttle_cap,
            cancel=cancel,
        )
        if self.session is not None:
            return await SyncRun(self, credential, settings, executor, self.session).run()
        async with httpx.AsyncClient(timeout=30.0) as session:
            return await SyncRun(self, credential, settings, executor, session).run()


class SyncRun:
    """One sync invocation; owns the adapter and its per-run state."""

    def __init__(
        self,
        coordinator: SyncCoordinator,
        credential: PlatformCredential,
        settings: PlatformSettings,
        executor: RequestExecutor,
        session: httpx.AsyncClient,
    ) -> None:
        self.coordinator = coordinator
        self.credential = credential
        self.settings = settings
        self.executor = executor
        self.session = session
        self.merchant_id = credential.merchant_id
        self.platform = credential.platform
        self.adapter: PlatformAdapter = build_adapter(credential, session)
        self.state = SyncState.IDLE
        self.report = SyncReport(success=False)
        self._refreshed = False

    async def run(self) -> SyncReport:
        self.state = SyncState.ENSURING_PREREQUISITES
        try:
            context = await self._ensure_prerequisites()
        except AuthExpiredError as exc:
            return self._auth_required(exc.reason, not_attempted=0)
        except SyncCancelled:
            self.state = SyncState.DONE
            return SyncReport(success=False, error="sync cancelled")
        except (SyncError, KeyError, ValueError) as exc:
            logger.warning("%s prerequisites failed for merchant %s: %s", self.platform, self.merchant_id, exc)
            self.state = SyncState.DONE
            return SyncReport(success=False, error=f"prerequisite failure: {exc}")
        if context.identifiers:
            await self.coordinator.credentials.save_identifiers(self.merchant_id, self.platform, context.identifiers)

        items = await self.coordinator.catalog.list_active(self.merchant_id)
        context.external_ids = await self.coordinator.ledger.external_ids(self.platform, (item.id for item in items))

        self.state = SyncState.SYNCING
        pending: list[CatalogItem] = list(items)
        while True:
            orchestrator = BatchOrchestrator(
                self.adapter,
                self.executor,
                self._reconcile,
                chunk_size=self.settings.chunk_size,
                concurrency=self.settings.concurrency,
            )
            result = await orchestrator.sync_batch(pending, context)
            self.report.synced += result.published
            self.report.failed += result.failed
            self.report.skipped += result.skipped
            pending = result.unresolved
            if not result.auth_expired:
                break
            if not await self._refresh():
                return self._auth_required(
                    f"{self.platform} credentials expired; reconnect required", not_attempted=len(pending)
                )
            self.state = SyncState.SYNCING

        self.state = SyncState.RECONCILING
        self.report.not_attempted = len(pending)
        if result.cancelled:
            self.report.error = "sync cancelled"
        self.report.success = self.report.error is None
        self.state = SyncState.DONE
        logger.info(
            "%s sync for merchant %s: %s synced, %s failed, %s skipped, %s not attempted",
            self.platform, self.merchant_id, self.report.synced, self.report.failed,
            self.report.skipped, self.report.not_attempted,
        )
        return self.report

    async def _ensure_prerequisites(self) -> PlatformContext:
        try:
            return await self.adapter.ensure_prerequisites(self.executor)
        except AuthExpiredError:
            if not await self._refresh():
                raise
            self.state = SyncState.ENSURING_PREREQUISITES
            return await self.adapter.ensure_prerequisites(self.executor)

    async def _refresh(self) -> bool:
        if self._refreshed or not self.credential.refresh_token:
            return False
        self._refreshed = True
        self.state = SyncState.REFRESHING
        try:
            self.credential = await self.coordinator.credentials.refresh(
                self.merchant_id, self.platform, self.credential.refresh_token
            )
        except (AuthFailure, httpx.HTTPError) as exc:
            logger.warning("%s token refresh failed for merchant %s: %s", self.platform, self.merchant_id, exc)
            return False
        self.adapter = build_adapter(self.credential, self.session)
        return True

    async def _reconcile(self, item: CatalogItem, outcome: SyncOutcome) -> None:
        await self.coordinator.ledger.append(item.id, self.platform, outcome)

    def _auth_required(self, reason: str, *, not_attempted: int) -> SyncReport:
        self.state = SyncState.AUTH_REQUIRED
        self.report.success = False
        self.report.auth_required = True
        self.report.not_attempted = not_attempted
        self.report.error = reason
        logger.warning(
            "%s sync for merchant %s stopped: %s (%s synced, %s not attempted)",
            self.platform, self.merchant_id, reason, self.report.synced, not_attempted,
        )
        return self.report
