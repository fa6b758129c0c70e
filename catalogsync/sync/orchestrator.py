"""Chunked, bounded-concurrency pushes of a catalog snapshot."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Iterator, Sequence

from catalogsync.adapters.base import PlatformAdapter
from catalogsync.errors import (
    AuthExpiredError,
    SkipItem,
    SyncCancelled,
    SyncError,
    TransientError,
)
from catalogsync.models import (
    BatchResult,
    CatalogItem,
    Failed,
    PlatformContext,
    PlatformRequest,
    Skipped,
    SyncOutcome,
)
from catalogsync.sync.cancel import CancelToken
from catalogsync.sync.executor import RequestExecutor

logger = logging.getLogger(__name__)

OutcomeSink = Callable[[CatalogItem, SyncOutcome], Awaitable[None]]


def chunked(items: Sequence[CatalogItem], size: int) -> Iterator[list[CatalogItem]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


class BatchOrchestrator:
    def __init__(
        self,
        adapter: PlatformAdapter,
        executor: RequestExecutor,
        on_outcome: OutcomeSink,
        *,
        chunk_size: int,
        concurrency: int,
        cancel: CancelToken | None = None,
    ) -> None:
        self.adapter = adapter
        self.executor = executor
        self.on_outcome = on_outcome
        self.chunk_size = chunk_size
        self.concurrency = max(concurrency, 1)
        self.cancel = cancel or executor.cancel

    async def sync_batch(self, items: Sequence[CatalogItem], context: PlatformContext) -> BatchResult:
        result = BatchResult(total=len(items))
        pending = deque(chunked(items, self.chunk_size))
        # One connection budget for the whole run, however many chunks are in flight.
        semaphore = asyncio.Semaphore(self.concurrency)
        logger.info(
            "Pushing %s items to %s in %s chunks (concurrency %s)",
            len(items), self.adapter.name, len(pending), self.concurrency,
        )

        async def worker() -> None:
            while pending and not self._halted(result):
                chunk = pending.popleft()
                result.chunks_started += 1
                await self._push_chunk(chunk, context, result, semaphore)

        workers = min(self.concurrency, len(pending))
        await asyncio.gather(*(worker() for _ in range(workers)))
        for chunk in pending:
            result.unresolved.extend(chunk)
        result.cancelled = self.cancel.cancelled
        return result

    def _halted(self, result: BatchResult) -> bool:
        return result.auth_expired or self.cancel.cancelled

    async def _push_chunk(
        self,
        chunk: list[CatalogItem],
        context: PlatformContext,
        result: BatchResult,
        semaphore: asyncio.Semaphore,
    ) -> None:
        if self.adapter.supports_batch:
            async with semaphore:
                await self._push_batch(chunk, context, result)
            return

        async def push(item: CatalogItem) -> None:
            async with semaphore:
                await self._push_item(item, context, result)

        await asyncio.gather(*(push(item) for item in chunk))

    async def _push_item(self, item: CatalogItem, context: PlatformContext, result: BatchResult) -> None:
        if self._halted(result):
            result.unresolved.append(item)
            return
        try:
            request = self.adapter.format_item(item, context)
        except SkipItem as exc:
            await self._record(result, item, Skipped(reason=exc.reason))
            return
        try:
            response = await self.executor.execute(self.adapter, request)
        except AuthExpiredError as exc:
            self._halt(result)
            await self._auth_rejected(result, [item], exc)
            return
        except SyncCancelled:
            result.unresolved.append(item)
            return
        except SyncError as exc:
            await self._record(result, item, _failure(exc))
            return
        await self._record(result, item, self.adapter.interpret_response(item, response, context))

    async def _push_batch(self, chunk: list[CatalogItem], context: PlatformContext, result: BatchResult) -> None:
        """Push a chunk as one batch call, resubmitting transient entries.

        Entries that come back rate-limited or with a server error go out again
        as a smaller batch after backoff, up to the executor's attempt ceiling.
        """
        pending: list[tuple[CatalogItem, PlatformRequest]] = []
        for item in chunk:
            try:
                pending.append((item, self.adapter.format_item(item, context)))
            except SkipItem as exc:
                await self._record(result, item, Skipped(reason=exc.reason))
        attempt = 0
        while pending:
            if self._halted(result):
                result.unresolved.extend(item for item, _ in pending)
                return
            attempt += 1
            items = [item for item, _ in pending]
            batch = self.adapter.format_batch([request for _, request in pending], context)
            try:
                response = await self.executor.execute(self.adapter, batch)
            except AuthExpiredError as exc:
                self._halt(result)
                await self._auth_rejected(result, items, exc)
                return
            except SyncCancelled:
                result.unresolved.extend(items)
                return
            except SyncError as exc:
                for item in items:
                    await self._record(result, item, _failure(exc))
                return

            retry: list[tuple[CatalogItem, PlatformRequest, Failed]] = []
            for (item, request), outcome in zip(pending, self.adapter.interpret_batch(items, response, context)):
                if isinstance(outcome, AuthExpiredError):
                    self._halt(result)
                    await self._auth_rejected(result, [item], outcome)
                elif isinstance(outcome, SyncError):
                    await self._record(result, item, _failure(outcome))
                elif isinstance(outcome, Failed) and outcome.retryable and attempt < self.executor.max_attempts:
                    retry.append((item, request, outcome))
                else:
                    await self._record(result, item, outcome)
            if not retry:
                return

            delay = self.executor.backoff.delay(attempt - 1)
            logger.info(
                "%s batch: %s entries failed transiently; retry %s/%s in %.2fs",
                self.adapter.name, len(retry), attempt, self.executor.max_attempts - 1, delay,
            )
            if self._halted(result) or await self.cancel.sleep(delay):
                for item, _, outcome in retry:
                    await self._record(result, item, outcome)
                return
            pending = [(item, request) for item, request, _ in retry]

    def _halt(self, result: BatchResult) -> None:
        if not result.auth_expired:
            logger.warning("%s credentials expired; no new requests will be issued", self.adapter.name)
        result.auth_expired = True

    async def _record(self, result: BatchResult, item: CatalogItem, outcome: SyncOutcome) -> None:
        result.record(outcome)
        await self.on_outcome(item, outcome)

    async def _auth_rejected(self, result: BatchResult, items: list[CatalogItem], exc: AuthExpiredError) -> None:
        # The attempt is ledgered, but the item stays unresolved so a run that
        # refreshes its token resumes it; the later row supersedes this one.
        outcome = Failed(reason=f"credentials expired: {exc.reason}", retryable=True)
        for item in items:
            result.unresolved.append(item)
            await self.on_outcome(item, outcome)


def _failure(exc: SyncError) -> Failed:
    return Failed(reason=exc.reason, retryable=isinstance(exc, TransientError))
