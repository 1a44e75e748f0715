"""Core service for conversation-scoped order history browsing.

Turns loose tool arguments (filters plus navigation controls such as
`sessionId`, `action`, `page`) into paginated requests against an
OrderSource, keeping a server-side session per filter set so follow-up
turns can say "next page" or "only the completed ones" without restating
everything.
"""

import dataclasses
import json
import logging
import time
from typing import Any, Dict, List, Optional

# Core Services Imports
from skyfi_mcp.core.services.session_analytics import SessionAnalytics, SessionAnalyticsTracker

# Domain Layer Imports
from skyfi_mcp.domain.interfaces.order_source import OrderSource
from skyfi_mcp.domain.interfaces.session_store import SessionStore
from skyfi_mcp.domain.models.common import ConversationID, OrderHistoryResponse, PageInfo, SessionID
from skyfi_mcp.domain.models.errors import SkyFiNotFoundError, SkyFiValidationError
from skyfi_mcp.domain.models.orders import (
    DEFAULT_PAGE_LIMIT,
    HistoryEntry,
    OrderHistorySession,
    OrderSummary,
    Page,
    to_iso,
)

# Infrastructure Layer Imports (default implementation)
from skyfi_mcp.infrastructure.session.memory_store import InMemorySessionStore

logger = logging.getLogger(__name__)

CONTROL_KEYS = frozenset({
    "sessionId",
    "limit",
    "offset",
    "page",
    "action",
    "includeHistory",
    "refinements",
    "refine",
    "reset",
})

ACTIONS = ("next", "previous", "first", "current")

# Filters described by name in history summaries
DESCRIBED_FILTERS = ("status", "startDate", "endDate", "satellite")


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _stable(filters: Dict[str, Any]) -> str:
    return json.dumps(filters, sort_keys=True, default=str)


def extract_filters(args: Dict[str, Any]) -> Dict[str, Any]:
    """Every non-control key with a non-empty value."""
    return {k: v for k, v in args.items() if k not in CONTROL_KEYS and not _is_empty(v)}


def merge_filters(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """Overlays `updates` on `base`; an empty update value removes the key."""
    merged = dict(base)
    for key, value in updates.items():
        if _is_empty(value):
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def normalize_filters(filters: Dict[str, Any]) -> Dict[str, Any]:
    """Drops empty values recursively, including empty entries of lists."""
    normalized: Dict[str, Any] = {}
    for key, value in filters.items():
        if _is_empty(value):
            continue
        if isinstance(value, (list, tuple)):
            items = [item for item in value if not _is_empty(item)]
            if items:
                normalized[key] = items
            continue
        if isinstance(value, dict):
            normalized[key] = normalize_filters(value)
            continue
        normalized[key] = value
    return normalized


def describe_filters(filters: Dict[str, Any]) -> str:
    """Human summary of a filter set, used for history entries."""
    parts: List[str] = []
    if filters.get("status"):
        parts.append(f"Status: {filters['status']}")
    if filters.get("startDate") or filters.get("endDate"):
        parts.append(f"Date range: {filters.get('startDate') or 'open'} to {filters.get('endDate') or 'open'}")
    if filters.get("satellite"):
        parts.append(f"Satellite: {filters['satellite']}")
    additional = [key for key in filters if key not in DESCRIBED_FILTERS]
    if additional:
        parts.append(f"Additional filters: {', '.join(additional)}")
    return "; ".join(parts) if parts else "Initial order query"


def _positive_int(value: Any, name: str, minimum: int) -> Optional[int]:
    """Validates an optional integer control argument."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise SkyFiValidationError(f"'{name}' must be an integer, got {value!r}")
    if value < minimum:
        raise SkyFiValidationError(f"'{name}' must be >= {minimum}, got {value}")
    return value


class OrderHistorySessionManager:
    """Stateful, filter-aware pagination over the order listing."""

    def __init__(
        self,
        order_source: OrderSource,
        store: Optional[SessionStore] = None,
        analytics: Optional[SessionAnalyticsTracker] = None,
    ):
        """Initializes the manager.

        Args:
            order_source: Anything implementing `list_orders(filters)`, normally the SkyFiClient.
            store: Session storage; a process-local InMemorySessionStore if None.
            analytics: Per-conversation counters; a fresh tracker if None.
        """
        self.order_source = order_source
        self.store = store or InMemorySessionStore()
        self.analytics = analytics or SessionAnalyticsTracker()
        logger.info(f"OrderHistorySessionManager initialized with {type(self.store).__name__}")

    # --- Queries ---

    async def get_session(self, session_id: str) -> Optional[OrderHistorySession]:
        return await self.store.get(SessionID(session_id))

    async def get_all_session_orders(self, session_id: str) -> List[OrderSummary]:
        """Every cached order of the session, page by page in offset order."""
        session = await self.store.get(SessionID(session_id))
        if session is None:
            raise SkyFiNotFoundError(f"Order history session not found: {session_id}")
        return session.all_orders()

    async def get_conversation_sessions(self, conversation_id: str) -> List[Dict[str, Any]]:
        """Summaries of the conversation's sessions, most recently updated first."""
        sessions = await self.store.list_by_conversation(ConversationID(conversation_id))
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return [
            {
                "sessionId": s.session_id,
                "createdAt": to_iso(s.created_at),
                "updatedAt": to_iso(s.updated_at),
                "summary": describe_filters(s.filters),
                "orderCount": len(s.unique_order_ids),
                "filters": dict(s.filters),
            }
            for s in sessions
        ]

    async def reset(self) -> None:
        """Drops every session."""
        await self.store.clear()

    # --- Pagination ---

    async def list_orders(self, conversation_id: str, request: Dict[str, Any]) -> OrderHistoryResponse:
        """Fetches one page of orders, creating or advancing a session.

        Args:
            conversation_id: The conversation owning the session.
            request: Filters plus control keys (sessionId, action, page, offset,
                limit, reset, includeHistory, refinements/refine).

        Returns:
            The structured page response.

        Raises:
            SkyFiValidationError: Invalid controls, or no filters and no session.
            SkyFiNotFoundError: `sessionId` names an unknown session.
            SkyFiError: Whatever the order source raises; the session is left untouched.
        """
        session_id = request.get("sessionId")
        if session_id is not None and not isinstance(session_id, str):
            raise SkyFiValidationError("'sessionId' must be a string")
        reset = request.get("reset") is True
        include_history = request.get("includeHistory") is True

        requested_limit = _positive_int(request.get("limit"), "limit", 1)
        requested_offset = _positive_int(request.get("offset"), "offset", 0)
        requested_page = _positive_int(request.get("page"), "page", 1)
        action = request.get("action")
        if action is not None:
            if not isinstance(action, str) or action.lower() not in ACTIONS:
                raise SkyFiValidationError(f"Unknown action {action!r}; expected one of {', '.join(ACTIONS)}")
            action = action.lower()

        direct_filters = extract_filters(request)
        refinements = request.get("refinements")
        if not isinstance(refinements, dict):
            refinements = request.get("refine") if isinstance(request.get("refine"), dict) else {}
        # Refinements may carry empty values to drop a filter
        refinement_filters = {k: v for k, v in refinements.items() if k not in CONTROL_KEYS}

        base_session: Optional[OrderHistorySession] = None
        if session_id:
            base_session = await self.store.get(SessionID(session_id))
            if base_session is None and not reset:
                raise SkyFiNotFoundError(f"Order history session not found: {session_id}")

        is_new = reset or base_session is None
        if is_new:
            seed = direct_filters
            if not seed and base_session is not None:
                seed = dict(base_session.filters)
            if not seed and not refinement_filters:
                raise SkyFiValidationError(
                    "Order history requests require at least one filter or an existing session."
                )
            session = OrderHistorySession(
                conversation_id=ConversationID(conversation_id),
                filters=normalize_filters(seed),
            )
            merged = merge_filters({}, seed)
        else:
            session = base_session
            merged = merge_filters(session.filters, direct_filters)

        if refinement_filters:
            merged = merge_filters(merged, refinement_filters)
        merged = normalize_filters(merged)
        if not merged:
            raise SkyFiValidationError("Unable to determine order filters. Provide filters or reset the session.")

        filters_changed = _stable(merged) != _stable(session.filters)
        limit = requested_limit or session.last_limit or DEFAULT_PAGE_LIMIT
        offset = self._resolve_offset(
            session, limit, requested_offset, requested_page, action,
            start_over=is_new or filters_changed,
        )

        request_filters = {k: v for k, v in merged.items() if not _is_empty(v)}
        request_filters.update(limit=limit, offset=offset)
        logger.info(
            f"Fetching order history page: conversation={conversation_id}, session={session.session_id}, "
            f"limit={limit}, offset={offset}, filters={sorted(merged)}"
        )

        # Failures propagate before anything is stored
        result = await self.order_source.list_orders(request_filters)
        raw_orders = result if isinstance(result, list) else (result or {}).get("orders") or []
        orders = [OrderSummary.from_api(o) for o in raw_orders if isinstance(o, dict)]

        page = Page(offset=offset, limit=limit, orders=orders)
        snapshot = session

        def fold(current: Optional[OrderHistorySession]) -> OrderHistorySession:
            # Applied to the latest stored state, under the store lock
            target = self._clone_session(current if current is not None else snapshot)
            changed = _stable(merged) != _stable(target.filters)
            target.filters = merged
            target.last_offset = offset
            target.last_limit = limit
            target.updated_at = time.time()
            target.store_page(page)
            target.track_orders(orders)
            if changed or not target.history:
                target.history.append(
                    HistoryEntry(filters=dict(merged), summary=describe_filters(merged), timestamp=target.updated_at)
                )
            return target

        session = await self.store.update(session.session_id, fold)

        if is_new or filters_changed:
            self.analytics.track_search(conversation_id, merged, page.count)
        for _ in orders:
            self.analytics.track_order(conversation_id)
        return self._build_response(session, page, include_history, self.analytics.get_analytics(conversation_id))

    @staticmethod
    def _clone_session(session: OrderHistorySession) -> OrderHistorySession:
        """Copy with its own filters, pages, ids and history."""
        return dataclasses.replace(
            session,
            filters=dict(session.filters),
            pages=list(session.pages),
            unique_order_ids=set(session.unique_order_ids),
            history=list(session.history),
        )

    @staticmethod
    def _resolve_offset(
        session: OrderHistorySession,
        limit: int,
        offset: Optional[int],
        page: Optional[int],
        action: Optional[str],
        start_over: bool,
    ) -> int:
        """Explicit offset, then page, then action, then the default."""
        if offset is not None:
            return offset
        if page is not None:
            return (page - 1) * limit
        if action is None:
            if start_over:
                return 0
            action = "next"

        if action == "first":
            return 0
        if action == "current":
            return session.last_offset
        if action == "previous":
            return max(0, session.last_offset - limit)
        # next
        if not session.pages:
            return 0
        return session.last_offset + session.last_limit

    @staticmethod
    def _build_response(
        session: OrderHistorySession,
        page: Page,
        include_history: bool,
        analytics: SessionAnalytics,
    ) -> OrderHistoryResponse:
        page_info: PageInfo = {
            "index": page.index,
            "offset": page.offset,
            "limit": page.limit,
            "count": page.count,
            "hasMore": page.has_more,
        }
        if page.has_more:
            page_info["nextOffset"] = page.offset + page.limit
        if page.offset > 0:
            page_info["previousOffset"] = max(page.offset - page.limit, 0)

        unique = len(session.unique_order_ids)
        response: OrderHistoryResponse = {
            "success": True,
            "sessionId": session.session_id,
            "message": f"Page {page.index} with {page.count} order(s).",
            "summary": f"Found {page.count} order(s) on page {page.index} ({unique} unique order(s) seen this session)",
            "orders": [order.to_dict() for order in page.orders],
            "page": page_info,
            "filters": dict(session.filters),
            "context": {
                "createdAt": to_iso(session.created_at),
                "updatedAt": to_iso(session.updated_at),
                "storedPages": len(session.pages),
                "uniqueOrders": unique,
            },
        }
        if include_history:
            response["history"] = [entry.to_dict() for entry in session.history]
        if analytics.total_orders > 0:
            response["analytics"] = {"totalOrders": analytics.total_orders, "totalSearches": analytics.total_searches}
        return response
