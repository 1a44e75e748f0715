import asyncio
import json

import httpx
import pytest

from skyfi_mcp.domain.events.api_events import CacheInvalidated, RetryScheduled
from skyfi_mcp.domain.models.errors import (
    ErrorKind, SkyFiAuthError, SkyFiConnectionError, SkyFiError, SkyFiNotFoundError,
    SkyFiRateLimitError, SkyFiServerError, SkyFiTimeoutError, SkyFiUnknownError,
    SkyFiValidationError
)
from skyfi_mcp.infrastructure.skyfi.client import SkyFiClient, cache_key, cache_prefix

TEST_API_KEY = "test-key-0123456789"
TEST_BASE_URL = "https://api.skyfi.test/platform-api"

class Recorder:
    """MockTransport handler returning queued responses and recording requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        # Fresh copy so a queued response can be served more than once
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    @property
    def calls(self) -> int:
        return len(self.requests)

def ok(payload) -> httpx.Response:
    return httpx.Response(200, json=payload)

# --- Construction ---

def test_missing_api_key_raises(monkeypatch):
    monkeypatch.delenv("SKYFI_API_KEY", raising=False)
    with pytest.raises(ValueError):
        SkyFiClient(base_url=TEST_BASE_URL)

def test_api_key_and_base_url_fall_back_to_environment(monkeypatch):
    monkeypatch.setenv("SKYFI_BASE_URL", "https://env.skyfi.test/api/")
    client = SkyFiClient()
    assert client.api_key == TEST_API_KEY
    assert client.base_url == "https://env.skyfi.test/api"

@pytest.mark.asyncio
async def test_client_is_an_async_context_manager(make_client):
    async with make_client(Recorder(ok({}))) as client:
        assert isinstance(client, SkyFiClient)
    assert client.http.is_closed

# --- Request pipeline ---

@pytest.mark.asyncio
async def test_requests_carry_auth_and_json_headers(make_client):
    recorder = Recorder(ok({"status": "ok"}))
    client = make_client(recorder)

    await client.ping()

    request = recorder.requests[0]
    assert request.headers["X-Skyfi-Api-Key"] == TEST_API_KEY
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["User-Agent"] == "SkyFi-MCP/1.0"
    assert str(request.url) == f"{TEST_BASE_URL}/ping"

@pytest.mark.asyncio
async def test_success_envelope_is_unwrapped(make_client):
    client = make_client(Recorder(ok({"success": True, "data": {"id": "o1"}})))
    assert await client.get_order("o1") == {"id": "o1"}

@pytest.mark.asyncio
async def test_raw_payload_is_passed_through(make_client):
    client = make_client(Recorder(ok({"email": "a@b.c"})))
    assert await client.whoami() == {"email": "a@b.c"}

@pytest.mark.asyncio
async def test_empty_body_returns_none(make_client):
    client = make_client(Recorder(httpx.Response(204)))
    assert await client.delete_webhook("w1") is None

@pytest.mark.asyncio
async def test_failed_envelope_raises_kind_from_code(make_client):
    recorder = Recorder(ok({"success": False, "error": {"code": "VALIDATION_ERROR", "message": "bad aoi"}}))
    client = make_client(recorder)

    with pytest.raises(SkyFiValidationError, match="bad aoi"):
        await client.create_aoi({"aoi": "POLYGON ((0 0, 1 0, 1 1, 0 1, 0 0))"})
    assert recorder.calls == 1

@pytest.mark.asyncio
async def test_failed_envelope_without_code_is_unknown(make_client):
    client = make_client(Recorder(ok({"success": False})))
    with pytest.raises(SkyFiUnknownError, match="API request failed"):
        await client.health_check()

@pytest.mark.asyncio
async def test_401_never_retries(make_client):
    recorder = Recorder(httpx.Response(401, json={"message": "invalid key"}))
    client = make_client(recorder, retries=3)

    with pytest.raises(SkyFiAuthError) as exc_info:
        await client.whoami()

    assert recorder.calls == 1
    assert exc_info.value.message == "invalid key"
    assert exc_info.value.status_code == 401

@pytest.mark.asyncio
@pytest.mark.parametrize("status, error_type", [
    (400, SkyFiValidationError),
    (404, SkyFiNotFoundError),
    (403, SkyFiUnknownError),
])
async def test_client_errors_map_to_one_kind_without_retry(make_client, status, error_type):
    recorder = Recorder(httpx.Response(status, json={"detail": "nope"}))
    client = make_client(recorder)

    with pytest.raises(error_type):
        await client.get_archive("a1")
    assert recorder.calls == 1

@pytest.mark.asyncio
async def test_500_retries_up_to_configured_retries(make_client):
    recorder = Recorder(httpx.Response(503, json={"message": "unavailable"}))
    events = []
    client = make_client(recorder, retries=3, event_sink=events.append)

    with pytest.raises(SkyFiServerError) as exc_info:
        await client.list_aois()

    # First attempt plus three retries
    assert recorder.calls == 4
    assert exc_info.value.status_code == 503
    assert sum(isinstance(e, RetryScheduled) for e in events) == 3

@pytest.mark.asyncio
async def test_server_error_then_success(make_client):
    recorder = Recorder(httpx.Response(502), ok({"status": "healthy"}))
    client = make_client(recorder)

    assert await client.health_check() == {"status": "healthy"}
    assert recorder.calls == 2

@pytest.mark.asyncio
async def test_408_is_a_retryable_timeout(make_client):
    recorder = Recorder(httpx.Response(408))
    client = make_client(recorder, retries=1)

    with pytest.raises(SkyFiTimeoutError):
        await client.ping()
    assert recorder.calls == 2

@pytest.mark.asyncio
async def test_429_surfaces_retry_after_and_does_not_retry(make_client):
    recorder = Recorder(httpx.Response(429, headers={"Retry-After": "17"}, json={"message": "slow down"}))
    client = make_client(recorder)

    with pytest.raises(SkyFiRateLimitError) as exc_info:
        await client.list_webhooks()

    assert exc_info.value.retry_after_seconds == 17
    assert exc_info.value.kind is ErrorKind.RATE_LIMITED
    assert recorder.calls == 1

@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [{}, {"Retry-After": "soon"}])
async def test_429_defaults_retry_after_to_60(make_client, headers):
    client = make_client(Recorder(httpx.Response(429, headers=headers)))
    with pytest.raises(SkyFiRateLimitError) as exc_info:
        await client.list_webhooks()
    assert exc_info.value.retry_after_seconds == 60

@pytest.mark.asyncio
async def test_transport_timeout_is_retried_then_raised(make_client):
    request = httpx.Request("GET", f"{TEST_BASE_URL}/ping")
    recorder = Recorder(httpx.ReadTimeout("timed out", request=request))
    client = make_client(recorder, retries=2)

    with pytest.raises(SkyFiTimeoutError):
        await client.ping()
    assert recorder.calls == 3

@pytest.mark.asyncio
async def test_connection_refused_is_connection_failure(make_client):
    request = httpx.Request("GET", f"{TEST_BASE_URL}/ping")
    recorder = Recorder(httpx.ConnectError("connection refused", request=request))
    client = make_client(recorder)

    with pytest.raises(SkyFiConnectionError) as exc_info:
        await client.ping()
    assert recorder.calls == 1
    assert "Connection failed" in exc_info.value.message

@pytest.mark.asyncio
async def test_every_failure_is_a_skyfi_error(make_client):
    request = httpx.Request("GET", f"{TEST_BASE_URL}/ping")
    client = make_client(Recorder(httpx.RemoteProtocolError("garbled", request=request)))
    with pytest.raises(SkyFiError) as exc_info:
        await client.ping()
    assert exc_info.value.kind is ErrorKind.UNKNOWN

# --- Cancellation ---

@pytest.mark.asyncio
async def test_cancel_event_aborts_in_flight_request(make_client):
    started = asyncio.Event()

    async def hanging(request):
        started.set()
        await asyncio.sleep(30)
        return ok({})

    client = make_client(hanging)
    cancel = asyncio.Event()

    async def cancel_when_started():
        await started.wait()
        cancel.set()

    canceller = asyncio.create_task(cancel_when_started())
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(client.ping(cancel_event=cancel), timeout=5)
    await canceller

@pytest.mark.asyncio
async def test_cancel_event_prevents_further_retries(make_client):
    cancel = asyncio.Event()
    requests = []

    def failing(request):
        requests.append(request)
        cancel.set()
        return httpx.Response(500)

    client = make_client(failing, retries=3, initial_backoff_s=30)
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(client.health_check(cancel_event=cancel), timeout=5)
    assert len(requests) == 1

# --- Caching ---

def test_cache_key_is_independent_of_param_order():
    assert cache_key("GET", "/orders", {"b": 1, "a": 2}) == cache_key("get", "/orders", {"a": 2, "b": 1})
    assert cache_key("GET", "/orders").startswith(cache_prefix("GET", "/orders"))

@pytest.mark.asyncio
async def test_identical_reads_within_ttl_hit_upstream_once(make_client):
    recorder = Recorder(ok([{"id": "aoi-1"}]))
    client = make_client(recorder)

    first = await client.list_aois()
    second = await client.list_aois()

    assert first == second == [{"id": "aoi-1"}]
    assert recorder.calls == 1

@pytest.mark.asyncio
async def test_create_order_clears_all_cached_reads(make_client):
    recorder = Recorder(ok({"orders": [], "total": 0}))
    events = []
    client = make_client(recorder, event_sink=events.append)

    await client.list_orders({"status": "completed"})
    await client.list_orders({"status": "completed"})
    assert recorder.calls == 1

    await client.create_order({"archiveId": "arch-1"})
    await client.list_orders({"status": "completed"})

    assert recorder.calls == 3
    assert any(isinstance(e, CacheInvalidated) and e.scope == "all" for e in events)

@pytest.mark.asyncio
async def test_create_tasking_order_clears_all_cached_reads(make_client):
    recorder = Recorder(ok({"id": "t1"}))
    client = make_client(recorder)

    await client.get_tasking("t1")
    await client.create_tasking_order({"aoi": "POLYGON ((0 0, 1 0, 1 1, 0 1, 0 0))"})
    await client.get_tasking("t1")

    assert recorder.calls == 3

@pytest.mark.asyncio
async def test_update_aoi_invalidates_aoi_reads_but_not_webhooks(make_client):
    recorder = Recorder(ok({"id": "aoi-1"}))
    client = make_client(recorder)

    await client.get_aoi("aoi-1")
    await client.list_aois()
    await client.list_webhooks()
    assert recorder.calls == 3

    await client.update_aoi("aoi-1", {"name": "renamed"})
    assert recorder.calls == 4

    await client.get_aoi("aoi-1")
    await client.list_aois()
    await client.list_webhooks()
    assert recorder.calls == 6

@pytest.mark.asyncio
async def test_webhook_mutations_invalidate_webhook_list(make_client):
    recorder = Recorder(ok([]))
    client = make_client(recorder)

    await client.list_webhooks()
    await client.create_webhook({"url": "https://hooks.test/x"})
    await client.list_webhooks()
    await client.delete_webhook("w1")
    await client.list_webhooks()

    assert recorder.calls == 5

@pytest.mark.asyncio
async def test_mutations_are_never_cached(make_client):
    recorder = Recorder(ok({"id": "n1"}))
    client = make_client(recorder)

    await client.create_notification({"aoi": "POLYGON ((0 0, 1 0, 1 1, 0 1, 0 0))", "webhookUrl": "https://h.test"})
    await client.create_notification({"aoi": "POLYGON ((0 0, 1 0, 1 1, 0 1, 0 0))", "webhookUrl": "https://h.test"})
    assert recorder.calls == 2

@pytest.mark.asyncio
async def test_different_params_use_different_cache_entries(make_client):
    recorder = Recorder(ok([]))
    client = make_client(recorder)

    await client.list_orders({"status": "completed"})
    await client.list_orders({"status": "pending"})
    assert recorder.calls == 2

@pytest.mark.asyncio
async def test_clear_cache_forces_refetch(make_client):
    recorder = Recorder(ok({"status": "ok"}))
    client = make_client(recorder)

    await client.get_feasibility("f1")
    assert await client.clear_cache() == 1
    await client.get_feasibility("f1")
    assert recorder.calls == 2

@pytest.mark.asyncio
async def test_read_in_flight_across_a_mutation_is_not_cached(make_client):
    """A list that started before create_order must not repopulate the cache once it lands."""
    release = asyncio.Event()
    reads = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            reads.append(request)
            if len(reads) == 1:
                await release.wait()
            return httpx.Response(200, json={"orders": [], "total": 0})
        return httpx.Response(200, json={"id": "o1"})

    client = make_client(handler)
    in_flight = asyncio.create_task(client.list_orders({"status": "completed"}))
    while not reads:
        await asyncio.sleep(0)

    await client.create_order({"archiveId": "arch-1"})
    release.set()
    assert await in_flight == {"orders": [], "total": 0}

    await client.list_orders({"status": "completed"})
    assert len(reads) == 2

@pytest.mark.asyncio
async def test_empty_payload_is_served_from_cache(make_client):
    recorder = Recorder(httpx.Response(204))
    client = make_client(recorder)

    assert await client.get_feasibility("f1") is None
    assert await client.get_feasibility("f1") is None
    assert recorder.calls == 1

@pytest.mark.asyncio
async def test_failed_mutation_still_invalidates(make_client):
    recorder = Recorder(ok([]), httpx.Response(400, json={"message": "bad url"}), ok([]))
    client = make_client(recorder)

    await client.list_webhooks()
    with pytest.raises(SkyFiValidationError):
        await client.create_webhook({"url": "not-a-url"})
    await client.list_webhooks()

    assert recorder.calls == 3

# --- Endpoint behaviour ---

@pytest.mark.asyncio
async def test_list_orders_normalizes_bare_list(make_client):
    recorder = Recorder(ok([{"id": "o1"}, {"id": "o2"}]))
    client = make_client(recorder)

    result = await client.list_orders({"status": "completed", "limit": 2, "offset": 0, "satellite": None})

    assert result == {"orders": [{"id": "o1"}, {"id": "o2"}], "total": None}
    params = recorder.requests[0].url.params
    assert params["status"] == "completed"
    assert params["limit"] == "2"
    assert "satellite" not in params

@pytest.mark.asyncio
async def test_list_orders_keeps_total_from_object(make_client):
    client = make_client(Recorder(ok({"success": True, "data": {"orders": [{"id": "o1"}], "total": 41}})))
    assert await client.list_orders() == {"orders": [{"id": "o1"}], "total": 41}

@pytest.mark.asyncio
async def test_archive_search_converts_geojson_location_to_wkt(make_client):
    recorder = Recorder(ok({"archives": []}))
    client = make_client(recorder)

    await client.archive_search({"location": {"type": "Point", "coordinates": [10, 20]}, "maxCloudCoveragePercent": 10})

    request = recorder.requests[0]
    body = json.loads(request.content)
    assert request.method == "POST"
    assert request.url.path.endswith("/archive/search")
    assert body["aoi"].startswith("POLYGON ((")
    assert "location" not in body
    assert body["maxCloudCoveragePercent"] == 10

@pytest.mark.asyncio
async def test_invalid_geometry_fails_before_any_request(make_client):
    recorder = Recorder(ok({}))
    client = make_client(recorder)

    with pytest.raises(SkyFiValidationError):
        await client.estimate_price({"location": {"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]}})
    assert recorder.calls == 0

@pytest.mark.asyncio
async def test_create_aoi_webhook_includes_aoi_id(make_client):
    recorder = Recorder(ok({"id": "w1"}))
    client = make_client(recorder)

    await client.create_aoi_webhook("aoi-9", {"url": "https://hooks.test/aoi"})

    request = recorder.requests[0]
    assert request.url.path.endswith("/monitoring/aois/aoi-9/webhooks")
    assert json.loads(request.content) == {"url": "https://hooks.test/aoi", "aoiId": "aoi-9"}

@pytest.mark.asyncio
@pytest.mark.parametrize("call, method, path", [
    (lambda c: c.ping(), "GET", "/ping"),
    (lambda c: c.health_check(), "GET", "/health-check"),
    (lambda c: c.whoami(), "GET", "/auth/whoami"),
    (lambda c: c.get_archive("a1"), "GET", "/archives/a1"),
    (lambda c: c.redeliver_order("o1", {"deliveryDriver": "S3"}), "POST", "/orders/o1/redelivery"),
    (lambda c: c.get_pricing({}), "POST", "/pricing"),
    (lambda c: c.delete_aoi("a1"), "DELETE", "/monitoring/aois/a1"),
    (lambda c: c.list_notifications(), "GET", "/notifications"),
    (lambda c: c.get_notification("n1"), "GET", "/notifications/n1"),
    (lambda c: c.delete_notification("n1"), "DELETE", "/notifications/n1"),
    (lambda c: c.create_feasibility_task({"aoi": "POLYGON ((0 0, 1 0, 1 1, 0 1, 0 0))"}), "POST", "/feasibility"),
    (lambda c: c.predict_passes({"aoi": "POLYGON ((0 0, 1 0, 1 1, 0 1, 0 0))"}), "POST", "/feasibility/pass-prediction"),
])
async def test_endpoint_routing(make_client, call, method, path):
    recorder = Recorder(ok({}))
    client = make_client(recorder)

    await call(client)

    assert recorder.requests[0].method == method
    assert recorder.requests[0].url.path == "/platform-api" + path
