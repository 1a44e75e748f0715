"""Async client for the SkyFi platform API.

Every call goes through one pipeline: token-bucket rate limiting, an httpx
request carrying the API key header, response decoding (envelope or raw
payload), error classification and bounded retries for transient failures.
Read endpoints are cached per key with endpoint-specific TTLs; mutations
invalidate the entries they make stale.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from skyfi_mcp.domain.events.api_events import CacheInvalidated
from skyfi_mcp.domain.interfaces.cache import CacheService
from skyfi_mcp.domain.interfaces.order_source import OrderSource
from skyfi_mcp.domain.models.common import CacheKey, CachePrefix
from skyfi_mcp.domain.models.errors import (
    DEFAULT_RETRY_AFTER_SECONDS,
    SkyFiAuthError,
    SkyFiConnectionError,
    SkyFiError,
    SkyFiNotFoundError,
    SkyFiRateLimitError,
    SkyFiServerError,
    SkyFiTimeoutError,
    SkyFiUnknownError,
    SkyFiValidationError,
)
from skyfi_mcp.infrastructure.cache.caching_service import ResponseCache
from skyfi_mcp.infrastructure.config import settings
from skyfi_mcp.infrastructure.resilience.api_retry import ApiRetryService, EventSink, log_event
from skyfi_mcp.infrastructure.resilience.rate_limiter import RateLimiter
from skyfi_mcp.infrastructure.skyfi.envelope import (
    error_details_from,
    error_message_from,
    parse_text,
    unwrap,
)
from skyfi_mcp.infrastructure.skyfi.geometry import normalize_aoi_params

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-Skyfi-Api-Key"
USER_AGENT = "SkyFi-MCP/1.0"

# Cache TTLs in seconds
ARCHIVE_TTL = 300
ORDER_TTL = 60
TASKING_TTL = 60
PRICING_TTL = 300
AOI_TTL = 300
WEBHOOK_LIST_TTL = 3600
NOTIFICATION_TTL = 300
FEASIBILITY_TTL = 30

Params = Optional[Dict[str, Any]]

# Cache miss marker; None is a legitimate cached payload
_MISS = object()

def cache_prefix(method: str, endpoint: str) -> CachePrefix:
    """Prefix shared by every cached call to exactly this endpoint."""
    return CachePrefix(f"{method.upper()}|{endpoint}|")

def cache_key(method: str, endpoint: str, params: Params = None) -> CacheKey:
    """Deterministic key: method, endpoint and params serialized with sorted keys."""
    serialized = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
    return CacheKey(f"{cache_prefix(method, endpoint)}{serialized}")

def _strip_empty(params: Params) -> Params:
    if params is None:
        return None
    return {k: v for k, v in params.items() if v is not None}

def _parse_retry_after(value: Optional[str]) -> int:
    try:
        seconds = int(str(value).strip())
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS
    return seconds if seconds >= 0 else DEFAULT_RETRY_AFTER_SECONDS

def _mask(api_key: str) -> str:
    return f"{api_key[:8]}..." if api_key else "MISSING"

class SkyFiClient(OrderSource):
    """Resilient gateway to the SkyFi platform API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_ms: int = settings.DEFAULT_TIMEOUT_MS,
        retries: int = settings.DEFAULT_RETRIES,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[CacheService] = None,
        initial_backoff_s: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        event_sink: Optional[EventSink] = None,
    ):
        """Initializes the client.

        Args:
            api_key: SkyFi API key. Falls back to SKYFI_API_KEY / skyfi.api_key.
            base_url: Platform API base URL. Falls back to SKYFI_BASE_URL.
            timeout_ms: Per-attempt HTTP timeout in milliseconds.
            retries: Retries after the first attempt for server errors and timeouts.
            rate_limiter: Shared token bucket; one is created from settings if None.
            cache: Response cache; an in-memory ResponseCache if None.
            initial_backoff_s: Delay before the first retry (doubles each retry).
            transport: Optional httpx transport (tests use httpx.MockTransport).
            event_sink: Receives resilience and cache domain events.
        """
        effective_api_key = api_key or settings.get_skyfi_api_key()
        if not effective_api_key:
            raise ValueError("SkyFi API key not provided and not found in configuration (SKYFI_API_KEY).")

        self.api_key = effective_api_key
        self.base_url = (base_url or settings.get_skyfi_base_url()).rstrip("/")
        self.timeout_ms = timeout_ms
        self.retries = retries
        self.dispatch_event = event_sink or log_event

        if rate_limiter is None:
            capacity, refill = settings.get_rate_limit_settings()
            rate_limiter = RateLimiter(capacity, refill)
        self.rate_limiter = rate_limiter
        self.cache = cache if cache is not None else ResponseCache()
        self.retry_service = ApiRetryService(
            rate_limiter=self.rate_limiter,
            max_retries=retries,
            initial_backoff_s=initial_backoff_s,
            event_sink=self.dispatch_event,
        )

        self.http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_ms / 1000,
            headers={
                API_KEY_HEADER: self.api_key,
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
            transport=transport,
        )
        logger.info(f"SkyFiClient initialized: base_url={self.base_url}, api_key={_mask(self.api_key)}, retries={retries}")

    async def __aenter__(self) -> "SkyFiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.http.aclose()
        logger.debug("SkyFiClient HTTP session closed")

    # --- Request pipeline ---

    def _classify_response(self, response: httpx.Response, method: str, endpoint: str) -> SkyFiError:
        """Maps a non-2xx response to exactly one error kind."""
        status = response.status_code
        try:
            body: Any = response.json() if response.content else None
        except ValueError:
            body = response.text
        message = error_message_from(body)
        details = error_details_from(body)

        if status == 401:
            logger.error(f"SkyFi API authentication error on {method} {endpoint}")
            return SkyFiAuthError(message, details)
        if status == 404:
            logger.error(f"SkyFi API not found error on {method} {endpoint}: {message}")
            return SkyFiNotFoundError(message, details)
        if status == 400:
            logger.error(f"SkyFi API validation error on {method} {endpoint}: {message}")
            return SkyFiValidationError(message, details)
        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("retry-after"))
            logger.error(f"SkyFi API rate limit error on {method} {endpoint} (retry after {retry_after}s)")
            return SkyFiRateLimitError(message, retry_after, details)
        if status == 408:
            logger.error(f"SkyFi API timeout error on {method} {endpoint}")
            return SkyFiTimeoutError(message, details)
        if status >= 500:
            logger.error(f"SkyFi API server error {status} on {method} {endpoint}: {message}")
            return SkyFiServerError(message, status, details)

        logger.error(f"Unexpected SkyFi API status {status} on {method} {endpoint}: {message}")
        return SkyFiUnknownError(message or f"Unexpected status {status}", status_code=status, details=details)

    async def _send(self, method: str, endpoint: str, params: Params, json_body: Any) -> Any:
        """One HTTP attempt. Returns the decoded payload or raises a SkyFiError."""
        logger.debug(f"Sending {method} {self.base_url}{endpoint} (api_key={_mask(self.api_key)})")
        try:
            response = await self.http.request(method, endpoint, params=params, json=json_body)
        except httpx.TimeoutException as e:
            logger.error(f"Request timeout on {method} {endpoint}: {e}")
            raise SkyFiTimeoutError("Request timeout") from e
        except httpx.ConnectError as e:
            logger.error(f"Connection error on {method} {endpoint}: {e}")
            raise SkyFiConnectionError(f"Connection failed: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"Unknown transport error on {method} {endpoint}: {type(e).__name__} - {e}")
            raise SkyFiUnknownError(str(e) or "Unknown error") from e

        if not response.is_success:
            raise self._classify_response(response, method, endpoint)

        logger.debug(f"Received {response.status_code} from {method} {endpoint}")
        payload = unwrap(parse_text(response.text), response.status_code)
        return payload

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Params = None,
        json: Any = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Performs a rate-limited, retried, uncached API call.

        Args:
            method: HTTP method.
            endpoint: Path relative to the base URL, e.g. '/orders'.
            params: Query parameters (None values are dropped).
            json: JSON request body.
            cancel_event: Setting it aborts the in-flight attempt and further retries.

        Returns:
            The unwrapped response payload.
        """
        method = method.upper()
        return await self.retry_service.execute_with_retry(
            self._send, method, endpoint, _strip_empty(params), json,
            method=method, endpoint=endpoint, cancel_event=cancel_event,
        )

    async def _cached(
        self,
        method: str,
        endpoint: str,
        ttl: int,
        *,
        params: Params = None,
        json: Any = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Serves a read from the cache, fetching and storing it on a miss.

        A result whose fetch overlapped an invalidation is returned but not stored.
        """
        key = cache_key(method, endpoint, params if params is not None else json)
        cached = await self.cache.get(key, _MISS)
        if cached is not _MISS:
            return cached
        generation = self.cache.generation
        result = await self.request(method, endpoint, params=params, json=json, cancel_event=cancel_event)
        if not await self.cache.set(key, result, ttl=ttl, if_generation=generation):
            logger.debug(f"Not caching {method} {endpoint}: cache invalidated during fetch")
        return result

    async def _invalidate(self, reason: str, prefixes: Iterable[CachePrefix]) -> int:
        removed = 0
        scope: List[str] = []
        for prefix in prefixes:
            removed += await self.cache.delete_prefix(prefix)
            scope.append(prefix)
        self.dispatch_event(CacheInvalidated(reason=reason, removed_entries=removed, scope=scope))
        return removed

    async def clear_cache(self, *, cancel_event: Optional[asyncio.Event] = None) -> int:
        """Drops every cached response. Returns the number of removed entries."""
        removed = await self.cache.clear()
        self.dispatch_event(CacheInvalidated(reason="clear_cache", removed_entries=removed, scope="all"))
        logger.info("Cache cleared")
        return removed

    async def _clear_all(self, reason: str) -> None:
        removed = await self.cache.clear()
        self.dispatch_event(CacheInvalidated(reason=reason, removed_entries=removed, scope="all"))

    async def _mutate(
        self,
        reason: str,
        method: str,
        endpoint: str,
        *,
        prefixes: Optional[Iterable[CachePrefix]] = None,
        json: Any = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Runs a mutating call, then drops the cache entries it makes stale.

        With `prefixes` None the whole cache is cleared. Invalidation runs
        whether or not the call succeeds.
        """
        try:
            return await self.request(method, endpoint, json=json, cancel_event=cancel_event)
        finally:
            if prefixes is None:
                await self._clear_all(reason)
            else:
                await self._invalidate(reason, prefixes)

    # --- Health & auth ---

    async def ping(self, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self.request("GET", "/ping", cancel_event=cancel_event)

    async def health_check(self, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self.request("GET", "/health-check", cancel_event=cancel_event)

    async def whoami(self, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        """Returns the user owning the API key."""
        return await self.request("GET", "/auth/whoami", cancel_event=cancel_event)

    # --- Archive ---

    async def archive_search(self, params: Dict[str, Any], *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        """Searches the imagery archive. `location`/`geometry` GeoJSON becomes the WKT `aoi`."""
        body = normalize_aoi_params(params)
        logger.info(f"archive_search called with keys: {sorted(body)}")
        return await self._cached("POST", "/archive/search", ARCHIVE_TTL, json=body, cancel_event=cancel_event)

    async def get_archive(self, archive_id: str, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._cached("GET", f"/archives/{archive_id}", ARCHIVE_TTL, cancel_event=cancel_event)

    # --- Orders ---

    async def get_order(self, order_id: str, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._cached("GET", f"/orders/{order_id}", ORDER_TTL, cancel_event=cancel_event)

    async def list_orders(
        self,
        filters: Params = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """Lists orders. Always returns `{"orders": [...], "total": int | None}`."""
        result = await self._cached("GET", "/orders", ORDER_TTL, params=_strip_empty(filters) or {}, cancel_event=cancel_event)
        return self._normalize_order_list(result)

    @staticmethod
    def _normalize_order_list(result: Any) -> Dict[str, Any]:
        if isinstance(result, list):
            return {"orders": result, "total": None}
        if isinstance(result, dict):
            orders = result.get("orders")
            if orders is None:
                orders = result.get("items") or result.get("data") or []
            total = result.get("total")
            return {"orders": list(orders), "total": total if isinstance(total, int) else None}
        return {"orders": [], "total": None}

    async def create_order(self, params: Dict[str, Any], *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        """Places an archive order. Clears the whole cache."""
        return await self._mutate("create_order", "POST", "/orders", json=normalize_aoi_params(params), cancel_event=cancel_event)

    async def redeliver_order(
        self,
        order_id: str,
        params: Dict[str, Any],
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        return await self._mutate(
            "redeliver_order", "POST", f"/orders/{order_id}/redelivery",
            prefixes=[cache_prefix("GET", f"/orders/{order_id}"), cache_prefix("GET", "/orders")],
            json=params, cancel_event=cancel_event,
        )

    # --- Tasking ---

    async def create_tasking_order(self, params: Dict[str, Any], *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        """Places a tasking order. Clears the whole cache."""
        return await self._mutate(
            "create_tasking_order", "POST", "/tasking", json=normalize_aoi_params(params), cancel_event=cancel_event
        )

    async def get_tasking(self, task_id: str, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._cached("GET", f"/tasking/{task_id}", TASKING_TTL, cancel_event=cancel_event)

    # --- Pricing ---

    async def estimate_price(self, params: Dict[str, Any], *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        body = normalize_aoi_params(params)
        return await self._cached("POST", "/pricing/estimate", PRICING_TTL, json=body, cancel_event=cancel_event)

    async def get_pricing(
        self,
        params: Params = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Pricing options, optionally for an AOI."""
        body = normalize_aoi_params(params)
        return await self._cached("POST", "/pricing", PRICING_TTL, json=body, cancel_event=cancel_event)

    # --- AOI monitoring ---

    async def create_aoi(self, params: Dict[str, Any], *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._mutate(
            "create_aoi", "POST", "/monitoring/aois",
            prefixes=[cache_prefix("GET", "/monitoring/aois")],
            json=normalize_aoi_params(params), cancel_event=cancel_event,
        )

    async def list_aois(self, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._cached("GET", "/monitoring/aois", AOI_TTL, cancel_event=cancel_event)

    async def get_aoi(self, aoi_id: str, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._cached("GET", f"/monitoring/aois/{aoi_id}", AOI_TTL, cancel_event=cancel_event)

    @staticmethod
    def _aoi_prefixes(aoi_id: str) -> List[CachePrefix]:
        return [cache_prefix("GET", f"/monitoring/aois/{aoi_id}"), cache_prefix("GET", "/monitoring/aois")]

    async def update_aoi(
        self,
        aoi_id: str,
        params: Dict[str, Any],
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        return await self._mutate(
            "update_aoi", "PUT", f"/monitoring/aois/{aoi_id}",
            prefixes=self._aoi_prefixes(aoi_id),
            json=normalize_aoi_params(params), cancel_event=cancel_event,
        )

    async def delete_aoi(self, aoi_id: str, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._mutate(
            "delete_aoi", "DELETE", f"/monitoring/aois/{aoi_id}",
            prefixes=self._aoi_prefixes(aoi_id), cancel_event=cancel_event,
        )

    # --- Webhooks ---

    async def create_webhook(self, params: Dict[str, Any], *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._mutate(
            "create_webhook", "POST", "/webhooks",
            prefixes=[cache_prefix("GET", "/webhooks")], json=params, cancel_event=cancel_event,
        )

    async def create_aoi_webhook(
        self,
        aoi_id: str,
        params: Dict[str, Any],
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Registers a webhook scoped to an AOI."""
        body = {**params, "aoiId": aoi_id}
        return await self._mutate(
            "create_aoi_webhook", "POST", f"/monitoring/aois/{aoi_id}/webhooks",
            prefixes=[cache_prefix("GET", "/webhooks"), cache_prefix("GET", f"/monitoring/aois/{aoi_id}")],
            json=body, cancel_event=cancel_event,
        )

    async def list_webhooks(self, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._cached("GET", "/webhooks", WEBHOOK_LIST_TTL, cancel_event=cancel_event)

    async def delete_webhook(self, webhook_id: str, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._mutate(
            "delete_webhook", "DELETE", f"/webhooks/{webhook_id}",
            prefixes=[cache_prefix("GET", "/webhooks")], cancel_event=cancel_event,
        )

    # --- Notifications ---

    async def create_notification(self, params: Dict[str, Any], *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        """Creates an imagery notification for an AOI (`aoi` WKT or GeoJSON `location`)."""
        return await self._mutate(
            "create_notification", "POST", "/notifications",
            prefixes=[cache_prefix("GET", "/notifications")],
            json=normalize_aoi_params(params), cancel_event=cancel_event,
        )

    async def list_notifications(
        self,
        params: Params = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        return await self._cached("GET", "/notifications", NOTIFICATION_TTL, params=_strip_empty(params) or {}, cancel_event=cancel_event)

    async def get_notification(self, notification_id: str, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._cached("GET", f"/notifications/{notification_id}", NOTIFICATION_TTL, cancel_event=cancel_event)

    async def delete_notification(self, notification_id: str, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._mutate(
            "delete_notification", "DELETE", f"/notifications/{notification_id}",
            prefixes=[cache_prefix("GET", f"/notifications/{notification_id}"), cache_prefix("GET", "/notifications")],
            cancel_event=cancel_event,
        )

    # --- Feasibility ---

    async def create_feasibility_task(self, params: Dict[str, Any], *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self.request("POST", "/feasibility", json=normalize_aoi_params(params), cancel_event=cancel_event)

    async def get_feasibility(self, feasibility_id: str, *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        return await self._cached("GET", f"/feasibility/{feasibility_id}", FEASIBILITY_TTL, cancel_event=cancel_event)

    async def predict_passes(self, params: Dict[str, Any], *, cancel_event: Optional[asyncio.Event] = None) -> Any:
        """Satellite pass prediction over an AOI and time window."""
        body = normalize_aoi_params(params)
        return await self._cached("POST", "/feasibility/pass-prediction", FEASIBILITY_TTL, json=body, cancel_event=cancel_event)
