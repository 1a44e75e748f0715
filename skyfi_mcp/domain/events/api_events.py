"""Domain Events related to upstream API calls and resilience.

Examples include events for when calls are deferred, retried, fail, or succeed,
and when cached responses are invalidated by a mutation.
"""

from dataclasses import dataclass, field
import time
from typing import Any, Optional

@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass

# --- Specific API Events ---

@dataclass
class ApiCallInitiated(DomainEvent):
    """Event triggered when an API call is about to be made."""
    method: str
    endpoint: str
    attempt_number: int = 1
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when an API call succeeds."""
    method: str
    endpoint: str
    latency_ms: float
    attempt_number: int = 1
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when an API call fails definitively (after retries)."""
    method: str
    endpoint: str
    error_kind: str
    error_message: str
    status_code: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallDeferred(DomainEvent):
    """Event triggered when an API call is deferred due to rate limiting."""
    method: str
    endpoint: str
    wait_time_seconds: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed API call."""
    method: str
    endpoint: str
    attempt_number: int
    delay_seconds: float
    error_kind: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class CacheInvalidated(DomainEvent):
    """Event triggered when a mutation drops cached responses."""
    reason: str  # e.g. 'create_order', 'delete_aoi'
    removed_entries: int
    scope: Any = None  # 'all' or the list of invalidated prefixes
    timestamp: float = field(default_factory=time.time)
