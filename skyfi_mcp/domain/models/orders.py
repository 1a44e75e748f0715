"""Domain models for conversation-scoped order history browsing.

Includes the `OrderSummary` snapshot, the `Page` and `HistoryEntry` value
objects and the `OrderHistorySession` aggregate root.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from skyfi_mcp.domain.models.common import ConversationID, OrderID, SessionID

DEFAULT_PAGE_LIMIT = 20


def to_iso(timestamp: float) -> str:
    """Formats a unix timestamp as an ISO 8601 UTC string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class OrderSummary:
    """Immutable snapshot of an upstream order taken at fetch time."""
    id: OrderID
    status: str
    created_at: str
    updated_at: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    delivery_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_api(cls, order: Dict[str, Any]) -> "OrderSummary":
        """Builds a summary from an upstream order payload (camelCase keys)."""
        return cls(
            id=OrderID(str(order.get("id", ""))),
            status=str(order.get("status", "unknown")),
            created_at=str(order.get("createdAt", "")),
            updated_at=order.get("updatedAt"),
            price=order.get("price"),
            currency=order.get("currency"),
            delivery_url=order.get("deliveryUrl"),
            metadata=order.get("metadata"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "status": self.status,
            "createdAt": self.created_at,
        }
        optional = {
            "updatedAt": self.updated_at,
            "price": self.price,
            "currency": self.currency,
            "deliveryUrl": self.delivery_url,
            "metadata": self.metadata,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


@dataclass
class Page:
    """One fetched window of the order listing."""
    offset: int
    limit: int
    orders: List[OrderSummary]
    fetched_at: float = field(default_factory=time.time)

    @property
    def count(self) -> int:
        return len(self.orders)

    @property
    def has_more(self) -> bool:
        # An exactly-full page implies there may be more.
        return len(self.orders) == self.limit

    @property
    def index(self) -> int:
        return self.offset // self.limit + 1


@dataclass
class HistoryEntry:
    """Audit record appended whenever the effective filter set changes."""
    filters: Dict[str, Any]
    summary: str
    timestamp: float = field(default_factory=time.time)
    entry_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.entry_id,
            "timestamp": to_iso(self.timestamp),
            "filters": dict(self.filters),
            "summary": self.summary,
        }


@dataclass
class OrderHistorySession:
    """Aggregate root: a server-held cursor over a filtered order listing."""
    conversation_id: ConversationID
    filters: Dict[str, Any] = field(default_factory=dict)
    session_id: SessionID = field(default_factory=lambda: SessionID(str(uuid.uuid4())))
    pages: List[Page] = field(default_factory=list)
    unique_order_ids: Set[str] = field(default_factory=set)
    history: List[HistoryEntry] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    # Cursor: the most recently fetched window, used for relative navigation.
    last_offset: int = 0
    last_limit: int = DEFAULT_PAGE_LIMIT

    def store_page(self, page: Page) -> None:
        """Replaces the page at the same offset, or inserts it keeping offset order."""
        for position, stored in enumerate(self.pages):
            if stored.offset == page.offset:
                self.pages[position] = page
                return
            if stored.offset > page.offset:
                self.pages.insert(position, page)
                return
        self.pages.append(page)

    def track_orders(self, orders: List[OrderSummary]) -> None:
        """Folds newly seen order ids into the running unique set."""
        for order in orders:
            self.unique_order_ids.add(order.id)

    def all_orders(self) -> List[OrderSummary]:
        """All cached orders, page by page in offset order."""
        return [order for page in self.pages for order in page.orders]
