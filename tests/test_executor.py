import httpx
import pytest
import respx

from conftest import RecordingToken, fast_backoff, fast_tracker

from catalogsync.adapters.pinterest import PinterestAdapter
from catalogsync.errors import AuthExpiredError, PermanentError, SyncCancelled, TransientError
from catalogsync.models import PlatformCredential, PlatformRequest
from catalogsync.sync.cancel import CancelToken
from catalogsync.sync.executor import RequestExecutor
from catalogsync.utils.rate_limit import RateLimitSignal

PIN = PlatformRequest("POST", "/pins", json={"title": "Mug"})


def make_executor(tracker=None, **kwargs):
    return RequestExecutor(
        tracker or fast_tracker(PinterestAdapter.parse_rate_limit),
        backoff=fast_backoff(),
        **kwargs,
    )


def pinterest(session):
    return PinterestAdapter(PlatformCredential(merchant_id="m1", platform="pinterest", access_token="t"), session)


@pytest.mark.asyncio
async def test_server_errors_retry_up_to_ceiling():
    async with respx.mock() as router:
        route = router.post(path="/v5/pins").mock(return_value=httpx.Response(503))
        async with httpx.AsyncClient() as session:
            with pytest.raises(TransientError) as excinfo:
                await make_executor().execute(pinterest(session), PIN)
    assert route.call_count == 3
    assert excinfo.value.attempts == 3
    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_auth_expired_is_never_retried():
    async with respx.mock() as router:
        route = router.post(path="/v5/pins").mock(
            return_value=httpx.Response(401, json={"message": "Authentication failed"})
        )
        async with httpx.AsyncClient() as session:
            with pytest.raises(AuthExpiredError) as excinfo:
                await make_executor().execute(pinterest(session), PIN)
    assert route.call_count == 1
    assert excinfo.value.reason == "Authentication failed"


@pytest.mark.asyncio
async def test_rejection_is_never_retried():
    async with respx.mock() as router:
        route = router.post(path="/v5/pins").mock(return_value=httpx.Response(400, json={"message": "Invalid link"}))
        async with httpx.AsyncClient() as session:
            with pytest.raises(PermanentError) as excinfo:
                await make_executor().execute(pinterest(session), PIN)
    assert route.call_count == 1
    assert excinfo.value.reason == "Invalid link"


@pytest.mark.asyncio
async def test_rate_limited_then_success():
    async with respx.mock() as router:
        route = router.post(path="/v5/pins").mock(
            side_effect=[httpx.Response(429), httpx.Response(201, json={"id": "p1"})]
        )
        async with httpx.AsyncClient() as session:
            response = await make_executor().execute(pinterest(session), PIN)
    assert response.json() == {"id": "p1"}
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_network_error_is_retried():
    async with respx.mock() as router:
        route = router.post(path="/v5/pins").mock(
            side_effect=[httpx.ConnectError("reset"), httpx.Response(201, json={"id": "p1"})]
        )
        async with httpx.AsyncClient() as session:
            response = await make_executor().execute(pinterest(session), PIN)
    assert response.status_code == 201
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_response_headers_feed_tracker():
    tracker = fast_tracker(PinterestAdapter.parse_rate_limit)
    async with respx.mock() as router:
        router.post(path="/v5/pins").mock(
            return_value=httpx.Response(
                201, json={"id": "p1"}, headers={"x-ratelimit-limit": "100", "x-ratelimit-remaining": "10"}
            )
        )
        async with httpx.AsyncClient() as session:
            await make_executor(tracker).execute(pinterest(session), PIN)
    assert tracker.state.percent_used == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_throttle_wait_is_capped():
    tracker = fast_tracker(lambda headers: RateLimitSignal(consumed=99, ceiling=100), default_wait=120.0)
    tracker.observe({})
    token = RecordingToken()
    async with respx.mock() as router:
        router.post(path="/v5/pins").mock(return_value=httpx.Response(201, json={"id": "p1"}))
        async with httpx.AsyncClient() as session:
            await make_executor(tracker, throttle_cap=0.5, cancel=token).execute(pinterest(session), PIN)
    assert 0.5 in token.sleeps


@pytest.mark.asyncio
async def test_cancelled_before_send_issues_no_request():
    token = CancelToken()
    token.cancel()
    async with respx.mock(assert_all_called=False) as router:
        route = router.post(path="/v5/pins").mock(return_value=httpx.Response(201, json={"id": "p1"}))
        async with httpx.AsyncClient() as session:
            with pytest.raises(SyncCancelled):
                await make_executor(cancel=token).execute(pinterest(session), PIN)
    assert route.call_count == 0


@pytest.mark.asyncio
async def test_cancel_during_backoff_surfaces_transient_failure():
    token = CancelToken()

    def fail_and_cancel(request):
        token.cancel()
        return httpx.Response(502)

    async with respx.mock() as router:
        route = router.post(path="/v5/pins").mock(side_effect=fail_and_cancel)
        async with httpx.AsyncClient() as session:
            with pytest.raises(TransientError):
                await make_executor(cancel=token).execute(pinterest(session), PIN)
    assert route.call_count == 1
