"""Defines common Value Objects used across different domain contexts.

These objects represent simple values or concepts like cache keys,
WKT polygons and session identifiers, ensuring consistency and type safety.
"""

from dataclasses import dataclass
from typing import NewType, Any, Dict, List, Optional, TypedDict

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are strings at runtime.
WKTPolygon = NewType("WKTPolygon", str)          # e.g. "POLYGON ((lon1 lat1, lon2 lat2, ...))"

# === Caching Context ===
CacheKey = NewType("CacheKey", str)              # Unique key for a cache entry
CachePrefix = NewType("CachePrefix", str)        # Prefix selecting a family of cache keys

# === Order History Context ===
SessionID = NewType("SessionID", str)            # Order history session (uuid4)
ConversationID = NewType("ConversationID", str)  # Conversation owning the sessions
OrderID = NewType("OrderID", str)

# --- Structured Data ---

@dataclass(frozen=True)
class SkyFiClientConfig:
    """Constructor-level configuration for the SkyFi client."""
    api_key: str
    base_url: str
    timeout_ms: int = 30000
    retries: int = 3

class PageInfo(TypedDict, total=False):
    """Pagination metadata returned to the order history caller."""
    index: int
    offset: int
    limit: int
    count: int
    hasMore: bool
    nextOffset: int
    previousOffset: int

class SessionContext(TypedDict):
    """Session bookkeeping returned alongside each order history page."""
    createdAt: str
    updatedAt: str
    storedPages: int
    uniqueOrders: int

class SessionAnalyticsSummary(TypedDict):
    """Per-conversation counters attached once an order has been seen."""
    totalOrders: int
    totalSearches: int

class OrderHistoryResponse(TypedDict, total=False):
    """Structured result of an order history request, rendered by the tool layer."""
    success: bool
    sessionId: str
    message: str
    summary: str
    filters: Dict[str, Any]
    page: PageInfo
    orders: List[Dict[str, Any]]
    context: SessionContext
    history: Optional[List[Dict[str, Any]]]
    analytics: SessionAnalyticsSummary
