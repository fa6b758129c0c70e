import asyncio
import json
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest
import respx

from conftest import (
    MERCHANT_ID,
    RecordingToken,
    fast_backoff,
    fast_settings,
    ledger_rows,
    make_item,
    seed_credential,
    seed_products,
)

from catalogsync.models import Published
from catalogsync.stores import SqlCatalogStore, SqlCredentialStore, SqlLedger
from catalogsync.sync.cancel import CancelToken
from catalogsync.sync.coordinator import SyncCoordinator
from catalogsync.utils.rate_limit import TrackerRegistry

BOARDS = {"items": [{"id": "board-1", "name": "Products"}], "bookmark": None}


def build(engine, session, **settings):
    return SyncCoordinator(
        SqlCatalogStore(engine),
        SqlCredentialStore(engine, session=session),
        SqlLedger(engine),
        trackers=TrackerRegistry(),
        session=session,
        settings_loader=fast_settings(**settings),
        backoff=fast_backoff(),
    )


def pin_id(request):
    title = json.loads(request.content)["title"]
    return "pin-" + title.split()[-1]


@pytest.fixture()
def catalog(seeded_engine):
    seed_products(seeded_engine, [make_item(n) for n in range(1, 201)])
    seed_credential(seeded_engine, "pinterest")
    return seeded_engine


@pytest.mark.asyncio
async def test_large_catalog_is_chunked_and_fully_recorded(catalog):
    async with respx.mock() as router:
        router.get(path="/v5/boards").mock(return_value=httpx.Response(200, json=BOARDS))
        pins = router.post(path="/v5/pins").mock(side_effect=lambda request: httpx.Response(201, json={"id": pin_id(request)}))
        async with httpx.AsyncClient() as session:
            report = await build(catalog, session, chunk_size=50).sync_catalog(MERCHANT_ID, "pinterest")
    assert report.success
    assert (report.synced, report.failed, report.skipped, report.not_attempted) == (200, 0, 0, 0)
    assert pins.call_count == 200
    rows = ledger_rows(catalog)
    assert len(rows) == 200
    assert {row["status"] for row in rows} == {"published"}
    assert {row["product_id"] for row in rows} == {f"sku-{n:03d}" for n in range(1, 201)}
    credential = await SqlCredentialStore(catalog).get(MERCHANT_ID, "pinterest")
    assert credential.board_id == "board-1"


@pytest.mark.asyncio
async def test_permanent_rejection_does_not_block_siblings(catalog):
    def create(request):
        if json.loads(request.content)["title"] == "Product 037":
            return httpx.Response(400, json={"message": "duplicate SKU"})
        return httpx.Response(201, json={"id": pin_id(request)})

    async with respx.mock() as router:
        router.get(path="/v5/boards").mock(return_value=httpx.Response(200, json=BOARDS))
        pins = router.post(path="/v5/pins").mock(side_effect=create)
        async with httpx.AsyncClient() as session:
            report = await build(catalog, session).sync_catalog(MERCHANT_ID, "pinterest")
    assert report.success
    assert (report.synced, report.failed) == (199, 1)
    assert pins.call_count == 200
    failed = [row for row in ledger_rows(catalog) if row["status"] == "failed"]
    assert len(failed) == 1
    assert failed[0]["product_id"] == "sku-037"
    assert failed[0]["reason"] == "duplicate SKU"
    assert failed[0]["retryable"] is False


@pytest.mark.asyncio
async def test_auth_expiry_stops_remaining_chunks(catalog):
    calls = []

    def create(request):
        calls.append(1)
        if len(calls) > 100:
            return httpx.Response(401, json={"message": "Authentication failed"})
        return httpx.Response(201, json={"id": pin_id(request)})

    async with respx.mock() as router:
        router.get(path="/v5/boards").mock(return_value=httpx.Response(200, json=BOARDS))
        router.post(path="/v5/pins").mock(side_effect=create)
        async with httpx.AsyncClient() as session:
            report = await build(catalog, session, chunk_size=50, concurrency=1).sync_catalog(MERCHANT_ID, "pinterest")
    assert report.auth_required
    assert not report.success
    assert (report.synced, report.failed, report.not_attempted) == (100, 0, 100)
    assert len(calls) == 101
    rows = ledger_rows(catalog)
    assert len(rows) == 101
    published = [row["product_id"] for row in rows if row["status"] == "published"]
    assert set(published) == {f"sku-{n:03d}" for n in range(1, 101)}
    assert (rows[-1]["product_id"], rows[-1]["status"], rows[-1]["retryable"]) == ("sku-101", "failed", True)
    assert rows[-1]["reason"] == "credentials expired: Authentication failed"


@pytest.mark.asyncio
async def test_prerequisite_failure_aborts_before_items(catalog):
    async with respx.mock(assert_all_called=False) as router:
        router.get(path="/v5/boards").mock(return_value=httpx.Response(403, json={"message": "Forbidden"}))
        pins = router.post(path="/v5/pins").mock(return_value=httpx.Response(201, json={"id": "x"}))
        async with httpx.AsyncClient() as session:
            report = await build(catalog, session).sync_catalog(MERCHANT_ID, "pinterest")
    assert not report.success
    assert "Forbidden" in report.error
    assert report.synced == 0
    assert pins.call_count == 0
    assert ledger_rows(catalog) == []


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_once_and_run_resumes(seeded_engine, monkeypatch):
    monkeypatch.setenv("PINTEREST_CLIENT_ID", "client")
    monkeypatch.setenv("PINTEREST_CLIENT_SECRET", "secret")
    seed_products(seeded_engine, [make_item(n) for n in range(1, 11)])
    seed_credential(seeded_engine, "pinterest", access_token="old", refresh_token="r1")

    def create(request):
        if request.headers["Authorization"] == "Bearer old":
            return httpx.Response(401, json={"message": "Authentication failed"})
        return httpx.Response(201, json={"id": pin_id(request)})

    async with respx.mock() as router:
        router.get(path="/v5/boards").mock(return_value=httpx.Response(200, json=BOARDS))
        router.post(path="/v5/pins").mock(side_effect=create)
        token = router.post(path="/v5/oauth/token").mock(
            return_value=httpx.Response(200, json={"access_token": "new", "refresh_token": "r2"})
        )
        async with httpx.AsyncClient() as session:
            report = await build(seeded_engine, session).sync_catalog(MERCHANT_ID, "pinterest")
    assert report.success
    assert (report.synced, report.not_attempted, report.auth_required) == (10, 0, False)
    assert token.call_count == 1
    rows = ledger_rows(seeded_engine)
    # Rejected attempts are ledgered before the refresh; the resumed pushes supersede them.
    assert {row["status"] for row in rows[-10:]} == {"published"}
    assert {row["product_id"] for row in rows[-10:]} == {f"sku-{n:03d}" for n in range(1, 11)}
    assert all(row["reason"].startswith("credentials expired") for row in rows[:-10])
    assert await SqlLedger(seeded_engine).latest("sku-001", "pinterest") == Published(external_id="pin-001")
    credential = await SqlCredentialStore(seeded_engine).get(MERCHANT_ID, "pinterest")
    assert credential.access_token == "new"


@pytest.mark.asyncio
async def test_expired_token_without_refresh_requires_reconnect(seeded_engine):
    seed_products(seeded_engine, [make_item(n) for n in range(1, 4)])
    seed_credential(seeded_engine, "pinterest")
    async with respx.mock() as router:
        router.get(path="/v5/boards").mock(return_value=httpx.Response(401, json={"message": "Authentication failed"}))
        async with httpx.AsyncClient() as session:
            report = await build(seeded_engine, session).sync_catalog(MERCHANT_ID, "pinterest")
    assert report.auth_required
    assert report.synced == 0
    assert ledger_rows(seeded_engine) == []


@pytest.mark.asyncio
async def test_previously_published_items_are_updated(seeded_engine):
    seed_products(seeded_engine, [make_item(1), make_item(2)])
    seed_credential(seeded_engine, "pinterest")
    await SqlLedger(seeded_engine).append("sku-001", "pinterest", Published(external_id="pin-old"))
    async with respx.mock() as router:
        router.get(path="/v5/boards").mock(return_value=httpx.Response(200, json=BOARDS))
        update = router.patch(path="/v5/pins/pin-old").mock(return_value=httpx.Response(200, json={"id": "pin-old"}))
        create = router.post(path="/v5/pins").mock(return_value=httpx.Response(201, json={"id": "pin-2"}))
        async with httpx.AsyncClient() as session:
            report = await build(seeded_engine, session).sync_catalog(MERCHANT_ID, "pinterest")
    assert report.synced == 2
    assert update.call_count == 1
    assert create.call_count == 1
    assert await SqlLedger(seeded_engine).latest("sku-001", "pinterest") == Published(external_id="pin-old")


@pytest.mark.asyncio
async def test_items_without_images_are_skipped(seeded_engine):
    seed_products(seeded_engine, [make_item(1), make_item(2, images=())])
    seed_credential(seeded_engine, "pinterest")
    async with respx.mock() as router:
        router.get(path="/v5/boards").mock(return_value=httpx.Response(200, json=BOARDS))
        router.post(path="/v5/pins").mock(return_value=httpx.Response(201, json={"id": "pin-1"}))
        async with httpx.AsyncClient() as session:
            report = await build(seeded_engine, session).sync_catalog(MERCHANT_ID, "pinterest")
    assert report.success
    assert (report.synced, report.skipped) == (1, 1)
    skipped = [row for row in ledger_rows(seeded_engine) if row["status"] == "skipped"]
    assert [(row["product_id"], row["reason"]) for row in skipped] == [("sku-002", "no image")]


@pytest.mark.asyncio
async def test_cancel_stops_new_chunks(seeded_engine):
    seed_products(seeded_engine, [make_item(n) for n in range(1, 21)])
    seed_credential(seeded_engine, "pinterest")
    cancel = CancelToken()
    calls = []

    def create(request):
        calls.append(1)
        if len(calls) == 5:
            cancel.cancel()
        return httpx.Response(201, json={"id": pin_id(request)})

    async with respx.mock() as router:
        router.get(path="/v5/boards").mock(return_value=httpx.Response(200, json=BOARDS))
        router.post(path="/v5/pins").mock(side_effect=create)
        async with httpx.AsyncClient() as session:
            coordinator = build(seeded_engine, session, chunk_size=5, concurrency=1)
            report = await coordinator.sync_catalog(MERCHANT_ID, "pinterest", cancel=cancel)
    assert not report.success
    assert report.error == "sync cancelled"
    assert (report.synced, report.not_attempted) == (5, 15)
    assert len(ledger_rows(seeded_engine)) == 5


@pytest.mark.asyncio
async def test_facebook_pushes_one_batch_per_chunk(seeded_engine):
    seed_products(seeded_engine, [make_item(n) for n in range(1, 4)])
    seed_credential(seeded_engine, "facebook", catalog_id="cat-1")

    def batch(request):
        form = dict(httpx.QueryParams(request.content.decode()))
        entries = json.loads(form["batch"])
        return httpx.Response(
            200, json=[{"code": 200, "body": json.dumps({"id": f"fb-{n}"})} for n, _ in enumerate(entries)]
        )

    async with respx.mock() as router:
        route = router.post(path="/v19.0/").mock(side_effect=batch)
        async with httpx.AsyncClient() as session:
            report = await build(seeded_engine, session).sync_catalog(MERCHANT_ID, "facebook")
    assert report.success
    assert report.synced == 3
    assert route.call_count == 1
    assert {row["external_id"] for row in ledger_rows(seeded_engine)} == {"fb-0", "fb-1", "fb-2"}


@pytest.mark.asyncio
async def test_unknown_platform_and_missing_connection(seeded_engine):
    async with httpx.AsyncClient() as session:
        coordinator = build(seeded_engine, session)
        unknown = await coordinator.sync_catalog(MERCHANT_ID, "myspace")
        missing = await coordinator.sync_catalog(MERCHANT_ID, "tiktok")
    assert not unknown.success and "unknown platform" in unknown.error
    assert not missing.success and "not connected" in missing.error


@pytest.mark.asyncio
async def test_concurrent_runs_share_rate_limit_usage(seeded_engine):
    seed_products(seeded_engine, [make_item(1), make_item(2)])
    seed_credential(seeded_engine, "pinterest")
    listings = []

    def list_boards(request):
        listings.append(1)
        # Only the first listing reports usage near the limit.
        headers = {"x-ratelimit-limit": "100", "x-ratelimit-remaining": "5"} if len(listings) == 1 else {}
        return httpx.Response(200, json=BOARDS, headers=headers)

    first, second = RecordingToken(), RecordingToken()
    with ThreadPoolExecutor(max_workers=1) as pool:
        async with respx.mock() as router:
            router.get(path="/v5/boards").mock(side_effect=list_boards)
            pins = router.post(path="/v5/pins").mock(
                side_effect=lambda request: httpx.Response(201, json={"id": pin_id(request)})
            )
            async with httpx.AsyncClient() as session:
                coordinator = SyncCoordinator(
                    SqlCatalogStore(seeded_engine, executor=pool),
                    SqlCredentialStore(seeded_engine, session=session, executor=pool),
                    SqlLedger(seeded_engine, executor=pool),
                    trackers=TrackerRegistry(),
                    session=session,
                    settings_loader=fast_settings(default_wait=0.01),
                    backoff=fast_backoff(),
                )
                reports = await asyncio.gather(
                    coordinator.sync_catalog(MERCHANT_ID, "pinterest", cancel=first),
                    coordinator.sync_catalog(MERCHANT_ID, "pinterest", cancel=second),
                )
    assert all(report.success for report in reports)
    assert [report.synced for report in reports] == [2, 2]
    assert pins.call_count == 4
    # Whichever run did not see the headers still waits on the usage the other observed.
    assert 0.01 in first.sleeps
    assert 0.01 in second.sleeps
