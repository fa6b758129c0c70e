"""Single logical request with pacing, throttling and bounded retry."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from catalogsync.errors import AuthExpiredError, PermanentError, SyncCancelled, TransientError
from catalogsync.models import PlatformRequest
from catalogsync.sync.cancel import CancelToken
from catalogsync.utils.rate_limit import RateLimitTracker
from catalogsync.utils.retry import BackoffPolicy

if TYPE_CHECKING:
    from catalogsync.adapters.base import PlatformAdapter

logger = logging.getLogger(__name__)


class RequestExecutor:
    def __init__(
        self,
        tracker: RateLimitTracker,
        *,
        backoff: BackoffPolicy | None = None,
        max_attempts: int = 3,
        throttle_cap: float = 60.0,
        cancel: CancelToken | None = None,
    ) -> None:
        self.tracker = tracker
        self.backoff = backoff or BackoffPolicy()
        self.max_attempts = max_attempts
        self.throttle_cap = throttle_cap
        self.cancel = cancel or CancelToken()

    async def execute(self, adapter: PlatformAdapter, request: PlatformRequest) -> httpx.Response:
        attempts = 0
        while True:
            await self._wait_for_quota(adapter.name)
            if self.cancel.cancelled:
                if attempts == 0:
                    raise SyncCancelled(request.path)
                raise TransientError("sync cancelled", attempts=attempts)
            attempts += 1
            status_code: int | None = None
            try:
                response = await adapter.send(request)
            except httpx.TransportError as exc:
                reason = f"network error: {exc}"
            else:
                self.tracker.observe(response.headers)
                status_code = response.status_code
                outcome = adapter.classify(response)
                if outcome == "ok":
                    return response
                reason = adapter.describe_error(response)
                if outcome == "auth_expired":
                    logger.warning("%s rejected credentials: %s", adapter.name, reason)
                    raise AuthExpiredError(reason, status_code=status_code)
                if outcome == "rejected":
                    raise PermanentError(reason, status_code=status_code)
            if attempts >= self.max_attempts:
                raise TransientError(reason, status_code=status_code, attempts=attempts)
            delay = self.backoff.delay(attempts - 1)
            logger.info(
                "%s %s %s failed (%s); retry %s/%s in %.2fs",
                adapter.name, request.method, request.path, reason, attempts, self.max_attempts - 1, delay,
            )
            if await self.cancel.sleep(delay):
                raise TransientError("sync cancelled", status_code=status_code, attempts=attempts)

    async def _wait_for_quota(self, platform: str) -> None:
        wait = self.tracker.should_throttle()
        if wait:
            wait = min(wait, self.throttle_cap)
            logger.info("%s quota at %.0f%%, waiting %.1fs", platform, self.tracker.state.percent_used * 100, wait)
            await self.cancel.sleep(wait)
        await self.tracker.space_out(self.cancel.sleep)
